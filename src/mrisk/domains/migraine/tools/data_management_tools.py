"""MCP tools for managing the health log (single and full deletion).

Deleting data is the user's right; every deletion is logged.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from mrisk.core.storage.repository import HealthLogRepository
    from mrisk.domains.migraine.domain_logic.model_lifecycle import ModelLifecycleController

logger = logging.getLogger(__name__)

DELETE_ALL_CONFIRMATION = "DELETE_ALL"


def register_data_management_tools(
    mcp: FastMCP,
    repository: HealthLogRepository,
    controller: ModelLifecycleController,
) -> None:
    """Register health log deletion tools on the MCP server."""

    @mcp.tool
    async def delete_episode(
        ctx: Context,
        episode_id: str,
    ) -> str:
        """Delete one logged migraine episode.

        Args:
            episode_id: The ID returned by log_episode.
        """
        if not repository.delete_episode(episode_id):
            return json.dumps({
                "status": "not_found",
                "episode_id": episode_id,
                "message": "No episode found with that ID.",
            })

        return json.dumps({
            "status": "deleted",
            "episode_id": episode_id,
            "episodes_logged": repository.count_episodes(),
        })

    @mcp.tool
    async def delete_all_data(
        ctx: Context,
        confirm: str = "",
    ) -> str:
        """Permanently delete ALL episodes, check-ins and model state.

        The personalized model, if one is active, is discarded as well.
        This cannot be undone.

        Args:
            confirm: Must be exactly 'DELETE_ALL' to proceed. Safety gate.
        """
        if confirm != DELETE_ALL_CONFIRMATION:
            return json.dumps({
                "status": "cancelled",
                "message": (
                    "To delete all data, call this tool with "
                    "confirm='DELETE_ALL'. This action cannot be undone."
                ),
            })

        start_time = time.monotonic()
        controller.mark_failed("health log deleted")
        count = repository.delete_all_data()
        elapsed_ms = (time.monotonic() - start_time) * 1000

        return json.dumps({
            "status": "all_deleted",
            "episodes_deleted": count,
            "model_status": controller.status.to_dict(),
            "duration_ms": round(elapsed_ms, 1),
            "message": "All health log data has been permanently deleted.",
        })
