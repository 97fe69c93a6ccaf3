import typing as t

from pydantic import Field
from pydantic import StringConstraints


DeviceName = t.Annotated[str, StringConstraints(strip_whitespace=True, min_length=1), Field(description="Pool key")]
UpperCase = t.Annotated[str, StringConstraints(to_upper=True)]
