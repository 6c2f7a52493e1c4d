import logging
import sys

import pandas as pd
from pydantic_settings import CliApp

from tile_alignment.alignment import (
    GlobalOptimizer,
    OptimizationResult,
    correspondences_from_dataframe,
    optimize_by_timepoint,
)
from tile_alignment.benchmarking_util import debug_timing
from tile_alignment.parameters import OptimizerCliParameters

logger = logging.getLogger(__name__)


def _report(result: OptimizationResult, label: str) -> None:
    if not result.has_solution:
        logger.warning(f"{label}: no solution")
        return
    diagnostics = result.diagnostics
    logger.info(
        f"{label}: {diagnostics.remaining_graph_size} tiles solved, "
        f"{len(diagnostics.lost_tiles)} lost, "
        f"{diagnostics.replaced_tiles_translation} downgraded to translation, "
        f"avg error {diagnostics.avg_displacement:.2f}px, max error {diagnostics.max_displacement:.2f}px"
    )


def main(args: list[str]) -> int:
    params = CliApp.run(OptimizerCliParameters, cli_args=args)
    log_level = logging.DEBUG if params.verbose else logging.INFO
    logging.basicConfig(level=log_level)

    with debug_timing("read correspondences"):
        records = correspondences_from_dataframe(pd.read_csv(params.input_csv), params.default_model)

    if params.by_timepoint:
        results = optimize_by_timepoint(records, params)
    else:
        results = {None: GlobalOptimizer(params).optimize(records)}

    frames = []
    for timepoint, result in results.items():
        _report(result, "all tiles" if timepoint is None else f"timepoint {timepoint}")
        if result.has_solution:
            frames.append(result.to_dataframe())

    if not frames:
        logger.error("No tile could be solved")
        return 1

    pd.concat(frames, ignore_index=True).to_csv(params.solved_csv, index=False)
    logger.info(f"Wrote solved tiles to {params.solved_csv}")
    return 0


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
