from varirender.schemas.composition import CompositionSpec, PlatformConfig, TrackItem
from varirender.schemas.download import DownloadItem
from varirender.schemas.progress_bar import ProgressBarConfig
from varirender.schemas.render import RenderSpec, TextOverlay, VariationSummary
from varirender.schemas.variation import NamingConfig, VariationCombination, VariationSet

__all__ = [
    "CompositionSpec",
    "PlatformConfig",
    "TrackItem",
    "ProgressBarConfig",
    "VariationSet",
    "VariationCombination",
    "NamingConfig",
    "RenderSpec",
    "TextOverlay",
    "VariationSummary",
    "DownloadItem",
]
