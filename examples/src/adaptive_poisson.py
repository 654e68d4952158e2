#!/usr/bin/env python3
"""
Example: Adaptive refinement with THB-splines on the L-shaped domain.

This example demonstrates:
1. Building a three-patch L-shaped domain with glued interfaces
2. Solving the Poisson equation with eliminated Dirichlet conditions
3. Estimating element errors (residual estimator or exact L2 error)
4. Marking (threshold / top fraction / Dörfler) and local refinement

The problem:
    -Laplacian(u) = 0  in (-1,1)^2 minus [0,1)^2
    u = g              on the boundary

Exact solution (corner singularity at the origin):
    u = r^(2/3) sin((2 theta - pi) / 3)

Marking criteria:
    1  threshold:    refine K if eta_K > parameter * max(eta)
    2  top fraction: refine the parameter * n_elements largest
    3  Dörfler:      refine the fewest elements holding parameter * sum(eta)
"""

import sys
import os

# Add project root to path (two levels up from examples/src/)
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import logging

from adaptIGA.adaptivity import AdaptiveRefinementController
from adaptIGA.io.config import RunConfig, load_config, setup_problem_from_config
from adaptIGA.postprocess.norms import convergence_rate


def main():
    import argparse
    parser = argparse.ArgumentParser(
        description="Solving a PDE with adaptive refinement using THB-splines.")
    parser.add_argument("-r", "--refine", type=int, default=None,
                        help="number of adaptive refinement loops")
    parser.add_argument("-i", "--initial-ref", type=int, default=None,
                        help="initial number of uniform refinement steps")
    parser.add_argument("-c", "--criterion", type=int, default=None, choices=[1, 2, 3],
                        help="criterion for adaptive refinement (1-3)")
    parser.add_argument("-p", "--parameter", type=float, default=None,
                        help="parameter for adaptive refinement")
    parser.add_argument("-e", "--estimator", default=None, choices=["residual", "l2", "h1"],
                        help="element indicator driving the marking")
    parser.add_argument("--config", default=None, help="YAML run configuration")
    parser.add_argument("--debug", action="store_true", help="enable debug output")
    options = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if options.debug else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    config = load_config(options.config) if options.config else RunConfig()
    adaptivity = config.adaptivity
    if options.refine is not None:
        adaptivity.passes = options.refine
    if options.initial_ref is not None:
        adaptivity.initial_refinements = options.initial_ref
    if options.criterion is not None:
        adaptivity.criterion = options.criterion
    if options.parameter is not None:
        adaptivity.parameter = options.parameter
    if options.estimator is not None:
        adaptivity.estimator = options.estimator

    pde, bases = setup_problem_from_config(config)

    print("=" * 70)
    print("Adaptive THB-Spline Poisson Example")
    print("=" * 70)
    print(f"\nGeometry: {config.problem.geometry} ({len(bases)} patches)")
    print(f"Exact solution: {pde.exact}")
    print(f"Estimator: {adaptivity.estimator}, criterion {adaptivity.criterion}, "
          f"parameter {adaptivity.parameter}")

    controller = AdaptiveRefinementController(
        adaptivity.estimator, adaptivity.criterion, adaptivity.parameter, adaptivity.passes,
        boundary_strategy=config.assembly.dirichlet_strategy,
        interface_strategy=config.assembly.interface_strategy,
        assembler_options=config.assembly.to_options(),
        linear_solver=config.solver.method,
    )
    records = controller.run(pde, bases, exact=pde.exact)

    print("\n" + "-" * 70)
    print(f"{'Loop':<6} {'DOFs':<8} {'Elements':<10} {'Marked':<8} "
          f"{'Estimate':<14} {'L2 Error':<14} {'Rate':<8}")
    print("-" * 70)
    previous = None
    for record in records:
        error = record.l2_error
        rate = ""
        if previous is not None and error is not None and previous.l2_error is not None:
            rate = f"{convergence_rate(previous.l2_error, error):.2f}"
        error_text = f"{error:<14.6e}" if error is not None else f"{'-':<14}"
        print(f"{record.pass_index:<6} {record.n_free:<8} {record.n_elements:<10} "
              f"{record.n_marked:<8} {record.estimate:<14.6e} {error_text} {rate:<8}")
        previous = record

    print("\nFinal basis:")
    for k, basis in enumerate(bases):
        print(f"  patch {k}: {basis.total_functions()} functions, {basis.total_elements()} elements")
        if not hasattr(basis, "levels_summary"):
            continue
        for level, (n_cells, n_functions) in enumerate(basis.levels_summary()):
            print(f"    level {level}: {n_cells} cells, {n_functions} functions")

    print("\n" + "=" * 70)
    print("Adaptive refinement completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
