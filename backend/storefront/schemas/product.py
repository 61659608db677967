from typing import List, Optional

from storefront.schemas.common import CamelModel
from storefront.services.domain import ProductInfo


class ProductSummary(CamelModel):
    id: str
    name: str
    brand: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    popularity: Optional[float] = None
    colors: List[str] = []
    sizes: List[str] = []

    @classmethod
    def from_info(cls, info: ProductInfo) -> "ProductSummary":
        return cls(
            id=info.id,
            name=info.name,
            brand=info.brand,
            price=info.price,
            category=info.category,
            subcategory=info.subcategory,
            rating=info.rating,
            rating_count=info.rating_count,
            popularity=info.popularity,
            colors=list(info.colors),
            sizes=list(info.sizes),
        )
