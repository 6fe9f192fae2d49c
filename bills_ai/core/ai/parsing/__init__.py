from .confidence import PromptVariant, score_confidence
from .json_recovery import parse_json_strict, recover_json

__all__ = ["PromptVariant", "score_confidence", "parse_json_strict", "recover_json"]
