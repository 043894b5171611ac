"""Resolve an external POS product id to a stocked product or a recipe."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from sqlalchemy.orm import Session

from barledger.models.pos import POSProduct, ProductMapping
from barledger.models.product import Product
from barledger.models.recipe import Recipe, RecipePOSMapping

logger = logging.getLogger(__name__)


class DepletionError(Exception):
    """Base for per-line failures; never aborts sibling lines or the run."""


class UnresolvedMappingError(DepletionError):
    """No confirmed product mapping and no active recipe mapping exists."""

    def __init__(self, external_product_id: str, reason: str = "No mapping found"):
        self.external_product_id = external_product_id
        super().__init__(f"{reason} for POS product: {external_product_id}")


@dataclass
class ResolvedProduct:
    pos_product: POSProduct
    mapping: ProductMapping
    product: Product


@dataclass
class ResolvedRecipe:
    pos_product: POSProduct
    mapping: RecipePOSMapping
    recipe: Recipe


Resolution = Union[ResolvedProduct, ResolvedRecipe]


class SaleResolver:
    """Looks up POSProduct -> ProductMapping -> RecipePOSMapping, in that order."""

    def __init__(self, db: Session):
        self.db = db

    def find_pos_product(
        self, organization_id: int, integration_id: int, external_product_id: str
    ) -> Optional[POSProduct]:
        return self.db.query(POSProduct).filter(
            POSProduct.organization_id == organization_id,
            POSProduct.integration_id == integration_id,
            POSProduct.external_id == external_product_id,
        ).first()

    def resolve(self, organization_id: int, integration_id: int, external_product_id: str) -> Resolution:
        pos_product = self.find_pos_product(organization_id, integration_id, external_product_id)
        if pos_product is None:
            raise UnresolvedMappingError(external_product_id, "POS product not found")

        mapping = self.db.query(ProductMapping).filter(
            ProductMapping.organization_id == organization_id,
            ProductMapping.pos_product_id == pos_product.id,
            ProductMapping.is_confirmed.is_(True),
        ).order_by(ProductMapping.id).first()
        if mapping is not None:
            return ResolvedProduct(pos_product=pos_product, mapping=mapping, product=mapping.product)

        recipe_mapping = self.db.query(RecipePOSMapping).filter(
            RecipePOSMapping.organization_id == organization_id,
            RecipePOSMapping.pos_product_id == pos_product.id,
            RecipePOSMapping.is_active.is_(True),
        ).order_by(RecipePOSMapping.id).first()
        if recipe_mapping is not None:
            return ResolvedRecipe(pos_product=pos_product, mapping=recipe_mapping, recipe=recipe_mapping.recipe)

        raise UnresolvedMappingError(external_product_id)

    def mapping_targets(self, pos_product: POSProduct) -> Tuple[Optional[int], Optional[int]]:
        """(product_id, recipe_id) a SaleItem for this POS product should carry.

        A direct product mapping wins, so at most one of the two is set.
        """
        try:
            resolution = self.resolve(pos_product.organization_id, pos_product.integration_id, pos_product.external_id)
        except UnresolvedMappingError:
            return None, None
        if isinstance(resolution, ResolvedProduct):
            return resolution.product.id, None
        return None, resolution.recipe.id

    def ensure_pos_product(
        self,
        organization_id: int,
        integration_id: int,
        external_product_id: str,
    ) -> POSProduct:
        """Return the catalog row, creating a placeholder for never-seen ids."""
        pos_product = self.find_pos_product(organization_id, integration_id, external_product_id)
        if pos_product is not None:
            return pos_product

        logger.warning(f"POS product not found for external ID {external_product_id}, creating placeholder")
        pos_product = POSProduct(
            organization_id=organization_id,
            integration_id=integration_id,
            external_id=external_product_id,
            name=f"Unknown Product {external_product_id}",
            is_active=True,
        )
        self.db.add(pos_product)
        self.db.flush()
        return pos_product
