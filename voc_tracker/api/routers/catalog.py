from fastapi import APIRouter, Depends, Request

from voc_tracker.api.deps import get_tracker
from voc_tracker.api.schemas import ImportResult, ProductCreate, ProductOut
from voc_tracker.engine.models import ChemicalComponent, Product
from voc_tracker.services.ingestion import products_from_frame, read_csv_bytes
from voc_tracker.services.tracker import EmissionsTracker

router = APIRouter()


@router.get("/products", response_model=list[ProductOut])
async def list_products(tracker: EmissionsTracker = Depends(get_tracker)):
    return [ProductOut(**p.to_dict()) for p in sorted(tracker.catalog.list(), key=lambda p: p.id)]


@router.post("/products", response_model=ProductOut, status_code=201)
async def create_product(data: ProductCreate, tracker: EmissionsTracker = Depends(get_tracker)):
    fields = data.model_dump()
    comp = fields.pop("chemical_composition") or []
    product = Product(**fields, chemical_composition=tuple(ChemicalComponent(**c) for c in comp))
    saved = await tracker.add_product(product)
    return ProductOut(**saved.to_dict())


@router.post("/products/import", response_model=ImportResult, status_code=201)
async def import_products_csv(request: Request, tracker: EmissionsTracker = Depends(get_tracker)):
    products = products_from_frame(read_csv_bytes(await request.body()))
    saved = [await tracker.add_product(p) for p in products]
    return ImportResult(imported=len(saved), ids=[p.id for p in saved])


@router.get("/material-content")
async def material_content(tracker: EmissionsTracker = Depends(get_tracker)):
    return tracker.material_content()
