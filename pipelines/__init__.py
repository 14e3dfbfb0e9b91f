# -*- coding: utf-8 -*-
"""Pipeline entry points of the population metabolism analysis."""
