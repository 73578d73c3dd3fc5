from contextbound.log.turn_log import TurnLog

__all__ = ["TurnLog"]
