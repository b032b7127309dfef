from .aggregate import aggregate
from .events import decode_log, normalize
from .models import (
    ActivityKind,
    ActivityRecord,
    AggregateStats,
    Position,
    PublishedState,
    QueryWindow,
    RefreshStatus,
    SessionContext,
)
from .pipeline import ActivityPipeline, PipelineSettings
from .planner import compute_window, split_window
from .scheduler import RefreshScheduler
from .stats import compute_stats

__version__ = "0.1.0"
