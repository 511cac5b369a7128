#!/usr/bin/env python3
"""
Copyright 2025 7th software Ltd.

Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except in compliance with the
License. You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software distributed under the License is distributed on an
"AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific
language governing permissions and limitations under the License.

Error kinds raised by DOCAT. Every one of them is terminal for the invocation and is reported once, by `main()`.
"""

from __future__ import annotations


class DocatError(Exception):
    """Base class for all user-visible DOCAT failures."""


class NoActiveContext(DocatError):
    """No document is available (missing source file, or a cursor outside of it)."""


class NoFunctionDetected(DocatError):
    """The cursor is not within reach of a function declaration and no selection was given."""

    def __init__(self, message: str = "Place cursor on a function or select code to document") -> None:
        super().__init__(message)


class MissingCredential(DocatError):
    """No API key is configured and the user declined to supply one."""

    def __init__(self, message: str = "API Key is required") -> None:
        super().__init__(message)


class CompletionServiceFailure(DocatError):
    """The completion request itself failed (network, authentication, model loading, ...)."""


class InvocationInProgress(DocatError):
    """Another DOCAT process is already documenting the same file."""
