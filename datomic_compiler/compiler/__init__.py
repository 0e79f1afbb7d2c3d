# Copyright 2020-present Kensho Technologies, LLC.
from .compiler_frontend import compile_query  # noqa
from .native_query import (  # noqa
    CopyVariable,
    DatetimeValue,
    FieldValue,
    NativeQuery,
    OrderBySpec,
    SelectSpec,
)
