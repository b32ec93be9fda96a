"""Media extraction engine: sequencing, resolution and the extractor entry point."""

from ad_media_extractor.engine.extractor import MediaExtractor, extract_media
from ad_media_extractor.engine.resolver import ResolutionEngine, select_video_resource
from ad_media_extractor.engine.sequencer import QualityUpgradeSequencer, SequencerState

__all__ = [
    "MediaExtractor",
    "extract_media",
    "ResolutionEngine",
    "select_video_resource",
    "QualityUpgradeSequencer",
    "SequencerState",
]
