# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Required to bootstrap setup.cfg in some situations."""

from setuptools import setup  # type: ignore

if __name__ == "__main__":
    setup()
