# Importing the models registers them with Base.metadata (Alembic, create_all)
from labeldesk.models.label import Label  # noqa: F401
from labeldesk.models.project import Project  # noqa: F401
