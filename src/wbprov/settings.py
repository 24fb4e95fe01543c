from __future__ import annotations
import os

STATE_DIR = os.environ.get("WBPROV_STATE_DIR", ".wbprov")
OUTPUT_TAIL = int(os.environ.get("WBPROV_OUTPUT_TAIL", "4000"))
HTTP_TIMEOUT = int(os.environ.get("WBPROV_HTTP_TIMEOUT", "60"))
DOCKER = os.environ.get("WBPROV_DOCKER", "docker")
SINGULARITY = os.environ.get("WBPROV_SINGULARITY", "singularity")
