# wbprov_recipe.py
# WhiteboxTools, compiled from a pinned tag with a checksum-verified rustup.
from __future__ import annotations

import os

from wbprov.dsl import apt_install, apt_update, cargo_build, publish_path, rustup, source
from wbprov.dsl import recipe as make_recipe

WHITEBOX_URL = "https://github.com/jblindsay/whitebox-tools.git"
WHITEBOX_REF = os.environ.get("WBPROV_WHITEBOX_REF", "v2.4.0")
WHITEBOX_COMMIT = os.environ.get("WBPROV_WHITEBOX_COMMIT") or None
RUST_VERSION = os.environ.get("WBPROV_RUST_VERSION", "1.77.2")
# sha256 of rustup-init for the pinned rustup version/target; required to run
RUSTUP_SHA256 = os.environ.get("WBPROV_RUSTUP_SHA256")


def recipe():
    return make_recipe(
        "whitebox",
        apt_update(),
        apt_install("git", "curl", "ca-certificates", "build-essential"),
        source(WHITEBOX_URL, ref=WHITEBOX_REF, commit=WHITEBOX_COMMIT, dest="whitebox-tools"),
        rustup(RUST_VERSION, sha256=RUSTUP_SHA256),
        cargo_build("whitebox-tools", binary="whitebox_tools"),
        publish_path("whitebox-tools/target/release"),
        base_image="ubuntu:20.04",
        workdir="/root",
        binary="whitebox_tools",
    )
