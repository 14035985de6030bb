# main.py
import logging

from fastapi import Depends, FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from smartshop.version import VERSION
from smartshop.api import assistant, auth, cart, catalog, orders, reports, reviews, wishlist
from smartshop.core.auth import require_admin
from smartshop.core.errors import install_error_handlers
from smartshop.core.logging import setup_logging

setup_logging()
log = logging.getLogger("smartshop.main")

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title='SmartShop', version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/shop/metrics",
    should_gzip=True,
)

install_error_handlers(app)

@app.get('/health')
def health(): return {'status':'ok'}

@app.get('/shop/health')
def shop_health(): return {'status':'ok'}

@app.get('/v1/_info')
def info(): return {'service':'smartshop','version':VERSION}

app.include_router(auth.router,      prefix='/auth',      tags=['auth'])
app.include_router(catalog.router,   prefix='/catalog',   tags=['catalog'])
app.include_router(cart.router,      prefix='/cart',      tags=['cart'])
app.include_router(orders.router,    prefix='/orders',    tags=['orders'])
app.include_router(reports.router,   prefix='/reports',   tags=['reports'], dependencies=[Depends(require_admin)])
app.include_router(reviews.router,   prefix='/reviews',   tags=['reviews'])
app.include_router(wishlist.router,  prefix='/wishlist',  tags=['wishlist'])
app.include_router(assistant.router, prefix='/assistant', tags=['assistant'])

log.info("smartshop %s started with %d routes", VERSION, len(app.routes))
