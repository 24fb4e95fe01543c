from .dsl import sh, apt_update, apt_install, source, toolchain, rustup, cargo_build, publish_path, recipe, RecipeBuilder, build
from .runner import run_recipe, load_recipe
from .model import Recipe, Step

__all__ = [
    "sh", "apt_update", "apt_install", "source", "toolchain", "rustup", "cargo_build", "publish_path",
    "recipe", "RecipeBuilder", "build", "run_recipe", "load_recipe", "Recipe", "Step",
]
