from pydantic import BaseModel, ConfigDict, model_validator

class ProductPayload(BaseModel):
    # Champs absents = valeur zéro, types stricts (un prix "5" est refusé)
    model_config = ConfigDict(strict=True, allow_inf_nan=False)

    name: str = ""
    price: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def fold_keys(cls, data):
        """
        A ``null`` body is an empty payload. Keys match field names without
        regard to case, later keys win, and ``null`` values count as absent.
        """
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data
        fields = {name.lower(): name for name in cls.model_fields}
        folded = {}
        for key, value in data.items():
            field = fields.get(key.lower())
            if field is not None and value is not None:
                folded[field] = value
        return folded

class ErrorResponse(BaseModel):
    error: str
