"""CLI for part-marker recognition with concurrent processing."""

import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import click

from part_markers import config
from part_markers.catalog import JsonPartsCatalog, PartsCatalog, describe
from part_markers.models import (
    CalibrationLayout,
    PipelineConfig,
    PipelineState,
    PipelineStatus,
)
from part_markers.nodes.calibration import to_results, translate_to_anchor
from part_markers.pipeline import run_pipeline_async

logger = logging.getLogger(__name__)


async def process_single_image(
    img_path: Path,
    pipeline_config: PipelineConfig,
    semaphore: asyncio.Semaphore,
) -> tuple[Path, PipelineState | None, Exception | None]:
    """Process a single image with semaphore control."""
    async with semaphore:
        logger.info("Processing: %s", img_path)
        try:
            state = await run_pipeline_async(img_path, pipeline_config)
            return (img_path, state, None)
        except Exception as e:
            logger.exception("Unhandled error processing %s", img_path)
            return (img_path, None, e)


async def process_images_concurrent(
    images: tuple[Path, ...],
    pipeline_config: PipelineConfig,
    max_concurrency: int,
) -> AsyncIterator[tuple[Path, PipelineState | None, Exception | None]]:
    """Process images with a bounded in-flight queue and stream completed results."""
    semaphore = asyncio.Semaphore(max_concurrency)
    image_iter = iter(images)
    in_flight: set[asyncio.Task[tuple[Path, PipelineState | None, Exception | None]]] = set()

    def _schedule_next() -> bool:
        try:
            img_path = next(image_iter)
        except StopIteration:
            return False
        task = asyncio.create_task(process_single_image(img_path, pipeline_config, semaphore))
        in_flight.add(task)
        return True

    for _ in range(min(max_concurrency, len(images))):
        _schedule_next()

    while in_flight:
        done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
        for completed in done:
            in_flight.remove(completed)
            yield completed.result()
            _schedule_next()


def apply_anchor(state: PipelineState, anchor: tuple[str, float, float]) -> PipelineState:
    """Shift every result so the anchor marker lands on the given top-left corner."""
    anchor_id, x, y = anchor
    try:
        moved = translate_to_anchor(state.validated, anchor_id, (x, y))
    except KeyError:
        return state.model_copy(update={
            "notes": state.notes + [f"Anchor id {anchor_id!r} not recognized; no offset applied"],
            "warnings": state.warnings + [f"W_ANCHOR_NOT_FOUND:{anchor_id}"],
        })
    return state.model_copy(update={
        "validated": moved,
        "results": to_results(moved, state.config.layout),
    })


def render_report(
    img_path: Path,
    state: PipelineState | None,
    error: Exception | None,
    catalog: PartsCatalog | None = None,
) -> dict:
    if state is None:
        return {
            "image": str(img_path),
            "status": PipelineStatus.FAILED.value,
            "markers": [],
            "notes": [],
            "warnings": [],
            "errors": [{"stage": None, "error_type": "unhandled", "message": str(error)}],
        }
    return {
        "image": str(img_path),
        "status": state.status.value,
        "markers": [describe(r, catalog) for r in state.results],
        "notes": state.notes,
        "warnings": state.warnings,
        "errors": [e.model_dump(mode="json") for e in state.errors],
    }


def _parse_expected_ids(value: str | None) -> frozenset[str] | None:
    if value is None:
        return None
    return frozenset(part.strip() for part in value.split(",") if part.strip())


@click.command()
@click.argument("images", nargs=-1, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--layout",
    "layout_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Calibration layout JSON (default: built-in engine front view)",
)
@click.option(
    "--expected-ids",
    help="Comma-separated marker ids to keep (default: the layout's ids; '' keeps all)",
)
@click.option(
    "--provider",
    type=click.Choice(["local", "openai"]),
    default="local",
    show_default=True,
    help="Symbol source",
)
@click.option(
    "--catalog",
    "catalog_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Parts catalog JSON used to attach names and prices",
)
@click.option(
    "--anchor",
    type=(str, float, float),
    default=None,
    metavar="ID X Y",
    help="Move all markers so marker ID's box starts at (X, Y)",
)
@click.option(
    "--max-concurrency",
    type=int,
    default=config.DEFAULT_MAX_CONCURRENCY,
    help="Max concurrent image processing",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def main(
    images: tuple[Path, ...],
    layout_path: Path | None,
    expected_ids: str | None,
    provider: str,
    catalog_path: Path | None,
    anchor: tuple[str, float, float] | None,
    max_concurrency: int,
    verbose: bool,
) -> None:
    """Detect and locate numeric part markers in diagram images."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not images:
        click.echo("Error: No input images provided", err=True)
        sys.exit(1)
    if max_concurrency < 1:
        click.echo("Error: --max-concurrency must be >= 1", err=True)
        sys.exit(1)

    overrides: dict = {
        "expected_ids": _parse_expected_ids(expected_ids),
        "text_provider": provider,
    }
    try:
        if layout_path is not None:
            overrides["layout"] = CalibrationLayout.from_json_file(layout_path)
        catalog = JsonPartsCatalog.from_file(catalog_path) if catalog_path else None
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    pipeline_config = PipelineConfig(**overrides)

    async def _run() -> tuple[int, int]:
        success_count = 0
        fail_count = 0

        async for img_path, state, error in process_images_concurrent(
            images, pipeline_config, max_concurrency
        ):
            if state is not None and anchor is not None and state.status == PipelineStatus.DONE:
                state = apply_anchor(state, anchor)

            click.echo(json.dumps(render_report(img_path, state, error, catalog), indent=2))

            if state is None or state.status == PipelineStatus.FAILED:
                fail_count += 1
                if state is not None and state.failure is not None:
                    err = state.failure
                    click.echo(f"Error processing {img_path}: [{err.stage.value}] {err.message}", err=True)
                else:
                    click.echo(f"Error processing {img_path}: {error}", err=True)
            else:
                success_count += 1

        return success_count, fail_count

    success_count, fail_count = asyncio.run(_run())

    if len(images) > 1:
        click.echo(
            f"Processed {success_count + fail_count} images: "
            f"{success_count} success, {fail_count} failed",
            err=True,
        )

    if fail_count > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
