"""
Per-session working directory: profile template and window-manager files.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger("desktop-broker")

WM_INIT_FILE = "fluxbox-init"
WM_APPS_FILE = "fluxbox-apps"

# Chrome-less desktop: no toolbar, every window undecorated, maximized
# and kept on the desktop layer.
WM_INIT_TEMPLATE = """\
session.screen0.toolbar.visible: false
session.screen0.toolbar.tools: prevworkspace, workspacename, nextworkspace, iconbar, systemtray, clock
session.appsFile: {apps_path}
"""

WM_APPS_CONTENT = """\
[app] (name=.*)
  [Deco] {NONE}
  [Maximize] {yes}
  [Layer] {DESKTOP}
[end]
"""


def prepare_workdir(path: Path, template: Path | None = None) -> Path:
    """
    Create a session working directory, seeded from a profile template.

    A missing template or a failed copy is logged, not raised.

    Args:
        path: Working directory to create
        template: Directory copied to ``path / "User"`` when it exists

    Returns:
        The working directory
    """
    path.mkdir(parents=True, exist_ok=True)

    if template is None:
        return path
    if not template.is_dir():
        logger.debug(f"Profile template {template} not found, skipping")
        return path

    try:
        shutil.copytree(template, path / "User", dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        logger.error(f"Failed to copy profile template {template}: {e}")
    return path


def write_wm_config(path: Path) -> Path:
    """
    Write the window-manager configuration into a working directory.

    Returns:
        Path of the init file to pass to the window manager
    """
    init_path = path / WM_INIT_FILE
    apps_path = path / WM_APPS_FILE
    init_path.write_text(WM_INIT_TEMPLATE.format(apps_path=apps_path))
    apps_path.write_text(WM_APPS_CONTENT)
    return init_path


def remove_workdir(path: Path) -> None:
    """Delete a working directory tree. Errors are logged, not raised."""
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.error(f"Failed to remove working directory {path}: {e}")
