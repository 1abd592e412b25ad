from ._version import __version__
from .client import GitHubClient, SkillStudioError, SkillStudioHTTPError
from .config import Config, load_config, save_config
from .service import FetchResult, SkillStudio

__all__ = [
    "Config",
    "FetchResult",
    "GitHubClient",
    "SkillStudio",
    "SkillStudioError",
    "SkillStudioHTTPError",
    "__version__",
    "load_config",
    "save_config",
]
