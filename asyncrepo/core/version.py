"""Build/version metadata.

Usually run from source or an editable install, so git metadata is not always
available; the build name can be injected through the environment.
"""

from __future__ import annotations

import os

from asyncrepo import __version__


def get_build_info() -> dict[str, str]:
    """Return build metadata.

    Environment variables (set by CI/build scripts):
    - ASYNCREPO_BUILD_NAME: human readable build name (e.g. "nightly 2026-10-01")
    - ASYNCREPO_GIT_SHA: short git sha
    """

    build_name = os.getenv("ASYNCREPO_BUILD_NAME", "")
    sha = os.getenv("ASYNCREPO_GIT_SHA", "dev")
    return {"version": __version__, "build_name": build_name, "git_sha": sha}


def get_version_string() -> str:
    info = get_build_info()
    name = info["build_name"].strip()
    if name:
        return name
    sha = info["git_sha"].strip() or "dev"
    return f"{info['version']} ({sha})"
