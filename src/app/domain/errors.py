from __future__ import annotations


class RecipeEditorError(Exception):
    pass


class RecipeValidationError(RecipeEditorError):
    def __init__(self, field: str, message: str = "Required field is missing"):
        super().__init__(message)
        self.field = field


class OwnershipError(RecipeEditorError):
    def __init__(self, recipe_id: str, message: str = "Only the owner can edit this recipe"):
        super().__init__(message)
        self.recipe_id = recipe_id


class RecipeNotFoundError(RecipeEditorError):
    def __init__(self, recipe_id: str):
        super().__init__(f"Recipe not found: {recipe_id}")
        self.recipe_id = recipe_id


class GatewayError(RecipeEditorError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Gateway error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class StorageError(RecipeEditorError):
    pass


class StorageUploadError(StorageError):
    def __init__(self, path: str, reason: str = "Upload failed"):
        super().__init__(f"Failed to upload {path}: {reason}")
        self.path = path
        self.reason = reason
