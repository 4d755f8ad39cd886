"""
This demo demonstrates how one can use the cell solver for a single
Gray-Pathmanathan cell.

The cell starts at rest. An S1 stimulus of 120 uA/uF is applied for t in
[0, 2] ms, and the evolution of the state variables is computed with
both the Forward Euler and the Rush-Larsen scheme and plotted.
"""

import math
import pylab

from xalheart import (
    CellSolverParameters,
    GrayPathmanathan2016,
    SingleCellSolver,
    StimulusSpec,
)


def main(scheme="ForwardEuler"):
    "Solve a single cell model on some time frame."
    model = GrayPathmanathan2016()
    S1 = StimulusSpec(start=0.0, period=1000.0, duration=2.0, magnitude=120.0)
    params = CellSolverParameters(scheme=scheme, num_substeps=100)
    solver = SingleCellSolver(model, S1, parameters=params)

    dt = 0.1
    interval = (0.0, 50.0)

    times = []
    values = []
    for (t0, t1), states in solver.solve(*interval, dt):
        times.append(t1)
        values.append(states[0].copy())

    return times, values


def plot_results(times, values, label, show=True):
    "Plot the evolution of each variable versus time."
    variables = list(zip(*values))
    rows = int(math.ceil(math.sqrt(len(variables))))
    names = list(GrayPathmanathan2016.default_initial_conditions().keys())
    for i, var in enumerate(variables):
        pylab.subplot(rows, rows, i + 1)
        pylab.plot(times, var, label=label)
        pylab.title(names[i])
        pylab.xlabel("t (ms)")
        pylab.grid(True)
    pylab.legend()

    if show:
        pylab.show()


if __name__ == "__main__":
    pylab.figure(figsize=(20, 10))
    for scheme in ("ForwardEuler", "RushLarsen"):
        times, values = main(scheme)
        print("{}: V(50) = {:g} mV".format(scheme, values[-1][0]))
        plot_results(times, values, scheme, show=False)

    print("Saving plot to 'variables.pdf'")
    pylab.savefig("variables.pdf")
    pylab.show()
