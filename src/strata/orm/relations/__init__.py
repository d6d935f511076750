"""Relationship kinds and the descriptor factories used to declare them.

Modules
-------
base             Relation protocol, RelationDescriptor
has_one_or_many  has_one / has_many
belongs_to       belongs_to (associate / dissociate)
belongs_to_many  belongs_to_many, Pivot (attach / detach / sync / toggle)
morph            morph_one / morph_many / morph_to / morph_to_many / morphed_by_many
"""

from strata.orm.relations.base import Relation, RelationDescriptor
from strata.orm.relations.belongs_to import BelongsTo, belongs_to
from strata.orm.relations.belongs_to_many import BelongsToMany, Pivot, belongs_to_many
from strata.orm.relations.has_one_or_many import HasMany, HasOne, HasOneOrMany, has_many, has_one
from strata.orm.relations.morph import (
    MorphMany,
    MorphOne,
    MorphOneOrMany,
    MorphTo,
    MorphToMany,
    morph_many,
    morph_one,
    morph_to,
    morph_to_many,
    morphed_by_many,
)

__all__ = [
    "BelongsTo",
    "BelongsToMany",
    "HasMany",
    "HasOne",
    "HasOneOrMany",
    "MorphMany",
    "MorphOne",
    "MorphOneOrMany",
    "MorphTo",
    "MorphToMany",
    "Pivot",
    "Relation",
    "RelationDescriptor",
    "belongs_to",
    "belongs_to_many",
    "has_many",
    "has_one",
    "morph_many",
    "morph_one",
    "morph_to",
    "morph_to_many",
    "morphed_by_many",
]
