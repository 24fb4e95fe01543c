# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from wbprov.dockerfile import build_image, convert_image, render_dockerfile
from wbprov.errors import ProvisionError
from wbprov.runner import load_recipe, run_recipe
from wbprov.ui.console import Console, get_console, set_console

DEFAULT_RECIPE = "wbprov_recipe.py"


def find_recipe_files() -> list[Path]:
    """
    Find all recipe files in the current directory.

    Returns:
        List of Path objects for recipe files
    """
    current_dir = Path(".")
    default_recipe = current_dir / DEFAULT_RECIPE
    if default_recipe.exists():
        return [default_recipe]
    return sorted(current_dir.glob("*_recipe.py"))


def discover_recipe(recipe_arg: str | None) -> Path:
    """
    Discover recipe file from argument or default.

    Raises:
        SystemExit: If no recipe can be found or several candidates exist
    """
    console = get_console()

    if recipe_arg:
        recipe_path = Path(recipe_arg)
        if not recipe_path.exists() and recipe_path.suffix != ".py":
            recipe_path = Path(str(recipe_path) + ".py")
        if not recipe_path.exists():
            console.print_error(
                "Recipe file not found",
                f"Could not find recipe file: {recipe_arg}",
                suggestion="Create a recipe file or specify a different path:\n  wbprov run --recipe my_recipe.py",
            )
            sys.exit(1)
        return recipe_path

    recipe_files = find_recipe_files()

    if len(recipe_files) == 0:
        console.print_error(
            "No recipe file found",
            "Could not find any recipe files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_RECIPE}",
                "  *_recipe.py",
            ],
            suggestion=f"Create a recipe file:\n  {DEFAULT_RECIPE}\n\nOr specify one explicitly:\n  wbprov run --recipe my_recipe.py",
        )
        sys.exit(1)

    if len(recipe_files) > 1:
        console.print_error(
            "Multiple recipe files found",
            "Found multiple recipe files. Please specify which one to use:",
            details=[f"  {f}" for f in recipe_files],
            suggestion="Specify a recipe explicitly:\n  wbprov run --recipe my_recipe.py",
        )
        sys.exit(1)

    return recipe_files[0]


def _load(recipe_arg: str | None):
    console = get_console()
    recipe_path = discover_recipe(recipe_arg)
    try:
        return load_recipe(recipe_path)
    except Exception as e:
        console.print_error(
            "Failed to load recipe",
            f"Could not load recipe from {recipe_path}",
            details=[str(e)],
        )
        if console.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show tool output and stack traces)",
)
@click.pass_context
def cli(ctx, debug):
    """wbprov: pinned, fail-fast provisioning of a compiled toolkit."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--recipe", "recipe_arg", default=None, help=f"Recipe file path (defaults to {DEFAULT_RECIPE} if present)")
@click.option("--workdir", default=None, help="Override the recipe's workdir")
@click.option("--state-dir", default=None, help="Where stamps, logs and env.sh are kept")
@click.option("--stamps/--no-stamps", default=True, show_default=True, help="Skip steps already completed with the same definition")
@click.option("--dry-run", is_flag=True, default=False, help="Print the steps without running them")
def run(recipe_arg, workdir, state_dir, stamps, dry_run):
    """Provision the recipe on this host."""
    console = get_console()
    recipe = _load(recipe_arg)

    try:
        result = run_recipe(
            recipe,
            workdir=workdir,
            state_dir=state_dir,
            use_stamps=stamps,
            dry_run=dry_run,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if dry_run:
        return

    console.print_results(result.steps)
    if not result.ok:
        sys.exit(1)
    console.print_search_path(
        recipe.binary,
        str(result.artifact) if result.artifact else None,
        str(result.env_file) if result.env_file else None,
    )


@cli.command()
@click.option("--recipe", "recipe_arg", default=None, help="Recipe file path")
def plan(recipe_arg):
    """List the recipe's steps in execution order."""
    recipe = _load(recipe_arg)
    console = get_console()
    console.print_header(f"{recipe.name} ({recipe.base_image})")
    run_recipe(recipe, dry_run=True)


@cli.command()
@click.option("--recipe", "recipe_arg", default=None, help="Recipe file path")
@click.option("-o", "--output", default=None, help="Write to a file instead of stdout")
def dockerfile(recipe_arg, output):
    """Render the recipe as a Dockerfile."""
    recipe = _load(recipe_arg)
    console = get_console()
    try:
        text = render_dockerfile(recipe)
    except ValueError as e:
        console.print_error("Recipe cannot be rendered", str(e))
        sys.exit(1)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print_info(f"Wrote {output}")
    else:
        click.echo(text, nl=False)


@cli.command()
@click.option("--recipe", "recipe_arg", default=None, help="Recipe file path")
@click.option("--tag", default="whitebox:latest", show_default=True, help="Image tag")
def image(recipe_arg, tag):
    """Build a container image from the recipe with docker."""
    recipe = _load(recipe_arg)
    console = get_console()
    try:
        built = build_image(recipe, tag)
    except (ProvisionError, ValueError) as e:
        console.print_error("Image build failed", str(e))
        if console.debug and isinstance(e, ProvisionError) and e.output:
            console.print_info(e.output)
        sys.exit(1)
    console.print_info(f"Built {built}")


@cli.command()
@click.option("--tag", required=True, help="Local docker image, e.g. whitebox:latest")
@click.option("-o", "--output", default="whitebox.sif", show_default=True, help="Singularity image file")
def convert(tag, output):
    """Convert a local docker image to a Singularity image (manual step)."""
    console = get_console()
    try:
        out = convert_image(tag, output)
    except ProvisionError as e:
        console.print_error("Conversion failed", str(e))
        if console.debug and e.output:
            console.print_info(e.output)
        sys.exit(1)
    console.print_info(f"Wrote {out}")


if __name__ == "__main__":
    cli()
