"""Services for the bundle board."""

from services.board_client import BoardApiClient, BoardClientError, BoardReplica, bootstrap_replica
from services.broadcaster import ChangeBroadcaster, QueueSubscriber
from services.bucket_classifier import classify
from services.card_store import CardStore, merge_update
from services.row_projector import ProjectionResult, parse_rows, project_row, project_rows

__all__ = [
    # Row pipeline
    "ProjectionResult",
    "parse_rows",
    "project_row",
    "project_rows",
    "classify",
    # Card store
    "CardStore",
    "merge_update",
    # Push channel
    "ChangeBroadcaster",
    "QueueSubscriber",
    # Observers
    "BoardApiClient",
    "BoardClientError",
    "BoardReplica",
    "bootstrap_replica",
]
