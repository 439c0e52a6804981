import getpass
import os
import pathlib
import sys
import tempfile


def _user_id() -> str:
    # Windows has no effective uid
    geteuid = getattr(os, "geteuid", None)
    if geteuid is not None:
        return str(geteuid())
    return getpass.getuser()


# Per-user so a different user never trips over our permissions
RUNDIR = pathlib.Path(tempfile.gettempdir()).joinpath(f"rerun-watcher-{_user_id()}")

IS_WINDOWS = sys.platform == "win32"

IPC_PATH_ENV = "RERUN_WATCHER_IPC_PATH"


def get_pipe_path(process_id: int, rundir: pathlib.Path = RUNDIR) -> str:
    pipe_path = str(rundir.joinpath(f"{process_id}.pipe"))
    if IS_WINDOWS:
        return f"\\\\?\\pipe\\{pipe_path}"
    return pipe_path
