"""
Plan persistence.
Stores each plan as a JSON file so plans survive restarts and can be
reopened by id.
"""

import json
import logging
import os
import re
from typing import List, Optional

from agent.plan import Plan
from config import get_plans_dir

logger = logging.getLogger(__name__)

PLAN_VERSION = 1


def _safe_id(plan_id: str) -> str:
    """Turn a plan id into a safe filename component."""
    s = re.sub(r"[^A-Za-z0-9_.-]+", "-", plan_id.strip()).strip("-.")
    return s or "plan"


class PlanStore:
    """
    Manages plan files on disk.

    File layout:  {base_dir}/{plan_id}.json
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or get_plans_dir()
        os.makedirs(self.base_dir, exist_ok=True)

    def save(self, plan: Plan) -> str:
        """Save a plan to disk. Returns the file path."""
        path = self._path_for(plan.id)
        data = plan.to_dict()
        data["version"] = PLAN_VERSION

        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            logger.debug(f"Plan saved: {path}")
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    def load(self, plan_id: str) -> Optional[Plan]:
        path = self._path_for(plan_id)
        if not os.path.exists(path):
            return None
        return self._read_file(path)

    def delete(self, plan_id: str) -> bool:
        """Delete a plan file. Returns True if deleted."""
        path = self._path_for(plan_id)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Plan deleted: {path}")
            return True
        return False

    def list_plans(self) -> List[Plan]:
        """All stored plans, newest first."""
        plans: List[Plan] = []
        for fname in os.listdir(self.base_dir):
            if fname.endswith(".json"):
                plan = self._read_file(os.path.join(self.base_dir, fname))
                if plan:
                    plans.append(plan)
        plans.sort(key=lambda p: p.updated_at or "", reverse=True)
        return plans

    def _path_for(self, plan_id: str) -> str:
        return os.path.join(self.base_dir, f"{_safe_id(plan_id)}.json")

    def _read_file(self, path: str) -> Optional[Plan]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Plan.from_dict(data)
        except Exception as e:
            logger.warning(f"Failed to read plan {path}: {e}")
            return None
