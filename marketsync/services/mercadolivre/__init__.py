from .auth import MLAuthManager
from .client import MercadoLivreClient
from .service import MercadoLivreService

__all__ = ["MLAuthManager", "MercadoLivreClient", "MercadoLivreService"]
