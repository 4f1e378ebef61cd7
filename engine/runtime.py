import os
import sys
from importlib.metadata import PackageNotFoundError, version

from requests import __version__ as requests_version
from yt_dlp.version import __version__ as ytdlp_version


def _app_version():
    override = os.environ.get("LIVEGRAB_VERSION")
    if override:
        return override
    try:
        return version("livegrab")
    except PackageNotFoundError:
        return "0.0.0"


def get_runtime_info():
    return {
        "app_version": _app_version(),
        "python_version": sys.version.split()[0],
        "requests_version": requests_version,
        "yt_dlp_version": ytdlp_version,
    }
