"""Read-only lookups into the ingredient catalog and the store directory."""

from typing import Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from bakehouse.core.exceptions import NotFoundError
from bakehouse.models.ingredient import Ingredient
from bakehouse.models.store import Store


class CatalogService:
    """Ingredient catalog and store directory used by the warehouse core."""

    def __init__(self, db: Session):
        self.db = db

    def get_store(self, store_id: int) -> Store:
        store = self.db.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store", store_id)
        return store

    def get_ingredient(self, ingredient_id: int) -> Ingredient:
        ingredient = self.db.get(Ingredient, ingredient_id)
        if ingredient is None:
            raise NotFoundError("Ingredient", ingredient_id)
        return ingredient

    def get_ingredients(self, ingredient_ids: Iterable[int]) -> Dict[int, Ingredient]:
        """Map ingredient id -> Ingredient for the ids that exist."""
        ids = set(ingredient_ids)
        if not ids:
            return {}
        rows = self.db.scalars(select(Ingredient).where(Ingredient.id.in_(ids))).all()
        return {ing.id: ing for ing in rows}

    def list_ingredients(self, active_only: bool = True) -> List[Ingredient]:
        query = select(Ingredient).order_by(Ingredient.name)
        if active_only:
            query = query.where(Ingredient.active.is_(True))
        return list(self.db.scalars(query).all())

    def store_names(self, store_ids: Iterable[int]) -> Dict[int, str]:
        ids = set(store_ids)
        if not ids:
            return {}
        rows = self.db.execute(select(Store.id, Store.name).where(Store.id.in_(ids))).all()
        return {row.id: row.name for row in rows}
