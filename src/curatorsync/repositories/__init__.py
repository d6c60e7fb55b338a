"""Repository exports."""

from curatorsync.repositories.concepts import ConceptRepository
from curatorsync.repositories.curators import CuratorRepository
from curatorsync.repositories.restaurants import RestaurantRepository

__all__ = ["ConceptRepository", "CuratorRepository", "RestaurantRepository"]
