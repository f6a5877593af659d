from django.db import models


class BaseModel(models.Model):
    """
    Abstract base carrying created_at / updated_at.

    Shared by the ledger and the marketplace records; newest rows sort first.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]
