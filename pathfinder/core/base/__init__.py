from pathfinder.core.base.pathfinder_base import Pathfinder, PathfinderABC, PathfinderABCMeta, PathfinderMeta

__all__ = ["Pathfinder", "PathfinderABC", "PathfinderABCMeta", "PathfinderMeta"]
