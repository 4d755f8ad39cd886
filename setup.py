"""Install module."""
from setuptools import setup


setup(
    name = "xalheart",
    version = "0.1.0",
    description = "Bidomain and EMI operator splitting solvers for S1-S2 stimulation of cardiac tissue",
    packages = ["xalheart", "xalheart.cellmodels",],
    package_dir = {"xalheart": "xalheart"},
    python_requires = ">=3.8",
    install_requires = [
        "numpy",
        "scipy>=1.12",
    ],
    extras_require = {
        "test": ["pytest"],
        "demo": ["matplotlib"],
    },
)
