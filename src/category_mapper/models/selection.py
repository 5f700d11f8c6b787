from typing import List, Literal, Type

from pydantic import BaseModel, ConfigDict, Field, create_model


class SelectionOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    is_leaf: bool = False


def build_selection_model(option_names: List[str], label: str) -> Type[BaseModel]:
    """
    Builds a response model whose only field is constrained to the offered names.

    The generated JSON schema carries an `enum`, which structured-output
    backends use for constrained decoding.
    """
    return create_model(
        "CategorySelection",
        __config__=ConfigDict(extra="forbid"),
        category=(
            Literal[tuple(option_names)],
            Field(..., description=f"The best matching category from the available {label} options"),
        ),
    )
