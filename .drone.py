# .drone.py
# Pipeline for droneprov itself: `droneprov exec` picks this file up by default.
from droneprov import pipeline, pipelines, service, step


def define():
    return pipelines(
        pipeline(
            "default",
            step("lint", "python:3.12", "python -m compileall -q src"),
            step("install", "python:3.12", "pip install -e '.[test]'", depends_on=["lint"]),
            step("test", "python:3.12", "pytest -q", depends_on=["install"]),
        ),
        pipeline(
            "integration",
            step("redis", "redis:7-alpine"),
            step("smoke", "python:3.12", "droneprov version"),
            services=[service("redis", "redis:7-alpine")],
        ),
    )
