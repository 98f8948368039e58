"""Partial updates driven by a per-entity descriptor of patchable fields.

A descriptor pairs a request schema (every field optional) with the model
column each field writes to. Only the keys present in the body are applied;
keys the schema does not know are ignored.
"""
from schemas import FarmerPatch, FarmPatch, validate


class PatchableFields:
    """Schema plus field -> column renames for the fields that are not stored under their own name."""

    def __init__(self, schema, **columns):
        self.schema = schema
        self.columns = columns

    def extract(self, payload):
        """Return {column: value} for the fields ``payload`` actually sets."""
        data = validate(self.schema, payload)
        return {self.columns.get(name, name): value
                for name, value in data.model_dump(exclude_unset=True).items()}


def apply_patch(instance, descriptor, payload):
    """Write the recognised keys of ``payload`` onto ``instance``; return the changed columns."""
    changes = descriptor.extract(payload)
    for column, value in changes.items():
        setattr(instance, column, value)
    return sorted(changes)


FARM_FIELDS = PatchableFields(FarmPatch, farm_size='farm_size_hectares')

FARMER_FIELDS = PatchableFields(FarmerPatch)
