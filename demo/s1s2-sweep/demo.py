"""
This demo runs a small unipolar S1-S2 sweep on a bidomain tissue block.

A 5 x 5 lattice of myocytes is stimulated at t = 0 by S1, and 30 ms
later by S2 with magnitudes 118, 119 and 120 uA/uF. The transmembrane
potential is sampled at the centre of the electrode and plotted for
every magnitude.

Options may be overridden by a JSON file in the format of
xalheart.load_config::

  python demo.py my_options.json
"""

import sys
import pylab

from pathlib import Path

from xalheart import (
    MagnitudeSweep,
    PointSampler,
    config_from_mapping,
    load_config,
)
from xalheart.sweep import run_directory


OPTIONS = {
    "model": "Bidomain",
    "ncellsx": 5,
    "ncellsy": 5,
    "ncellsz": 1,
    "meshsize": 0.05,
    "e1xmin": 0.2,
    "e1ymin": 0.03,
    "e1length": 0.25,
    "e1width": 0.05,
    "S1Start": 0.0,
    "S1Duration": 2.0,
    "S1Magnitude": 120.0,
    "S1S2Interval": 30.0,
    "S2Duration": 2.0,
    "MinS2": 118.0,
    "MaxS2": 120.0,
    "S2Increment": 1.0,
    "ti": 0.0,
    "tf": 50.0,
    "timestepsize": 0.1,
    "timesubsteps": 100,
    "RushLarsen": 1,
    "SampleSteps": 5,
    "PlotSteps": 100,
    "CheckPointSteps": 250,
    "samplex": [0.3],
    "sampley": [0.05],
    "samplez": [0.01],
    "outputdir": "results-s1s2",
}


def main(argv):
    if len(argv) > 1:
        config = load_config(argv[1])
    else:
        config = config_from_mapping(OPTIONS)

    sweep = MagnitudeSweep(config)
    results = sweep.run()

    for result in results:
        print("S2 = {:g}: {} at t = {:g}".format(
            result.context.S2_magnitude, result.status.value, result.final_time
        ))
        path = run_directory(config.output.outputdir, result.context) / "samples.txt"
        if Path(path).is_file():
            names, rows = PointSampler.read(path)
            pylab.plot(rows[:, 0], rows[:, 1], label="S2 = {:g}".format(result.context.S2_magnitude))

    pylab.xlabel("t (ms)")
    pylab.ylabel("V (mV)")
    pylab.legend()
    pylab.grid(True)
    pylab.savefig("s1s2.pdf")
    pylab.show()


if __name__ == "__main__":
    main(sys.argv)
