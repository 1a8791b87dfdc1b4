# Import SQLAlchemy models so they register on Base.metadata
from greendrop.models.document import Document  # noqa: F401
