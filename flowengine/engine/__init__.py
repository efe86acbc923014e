# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow execution engine.

This package contains:
- nodes / models: workflow definition and result models
- validation: graph construction and execution plan
- variables / context: template resolution and per-run state
- executor / aggregator: scheduling and result building
"""
