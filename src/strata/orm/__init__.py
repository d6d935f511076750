"""strata.orm — models, relations and model queries.

Modules
-------
model         Model base class, @accessor / @mutator
query         ModelQuery (scopes, eager loads), Repository
collection    Collection result list
relations     relationship kinds and declaration helpers
soft_deletes  SoftDeletingScope
events        lifecycle event dispatcher
registry      model registry and morph map
naming        table / foreign-key / pivot naming conventions
"""

from strata.orm.collection import Collection
from strata.orm.model import Model, accessor, mutator
from strata.orm.query import ModelQuery, Repository
from strata.orm.registry import morph_map
from strata.orm.relations import (
    Pivot,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    morph_many,
    morph_one,
    morph_to,
    morph_to_many,
    morphed_by_many,
)
from strata.orm.soft_deletes import SoftDeletingScope

__all__ = [
    "Collection",
    "Model",
    "ModelQuery",
    "Pivot",
    "Repository",
    "SoftDeletingScope",
    "accessor",
    "belongs_to",
    "belongs_to_many",
    "has_many",
    "has_one",
    "morph_many",
    "morph_map",
    "morph_one",
    "morph_to",
    "morph_to_many",
    "morphed_by_many",
    "mutator",
]
