"""Model domain: accessor protocols, in-memory model, loader, and scope table."""

from bpanalyzer.model.loader import ModelLoadError, load_model, model_from_dict, save_model
from bpanalyzer.model.objects import Model, ModelObject
from bpanalyzer.model.protocols import AnnotationObject, ModelAccessor
from bpanalyzer.model.scope import SCOPE_TABLE, candidates, candidates_for_scopes, find_object

__all__ = [
    "SCOPE_TABLE",
    "AnnotationObject",
    "Model",
    "ModelAccessor",
    "ModelLoadError",
    "ModelObject",
    "candidates",
    "candidates_for_scopes",
    "find_object",
    "load_model",
    "model_from_dict",
    "save_model",
]
