from functools import lru_cache

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from core.registry import OperatorRegistry
from core.utils import env, env_list, setup_logging


@lru_cache(maxsize=1)
def get_registry() -> OperatorRegistry:
    seed = []
    for raw in env_list("ADMIN_IDS", ""):
        try:
            seed.append(int(raw))
        except ValueError:
            raise RuntimeError(f"ADMIN_IDS must contain integer user ids, got {raw!r}")
    return OperatorRegistry(env("OPERATORS_FILE", "data/operators.json"), seed=seed)


app = FastAPI(title="Operator Registry API")


class OperatorIn(BaseModel):
    user_id: int


@app.get("/operators")
def list_operators(reg: OperatorRegistry = Depends(get_registry)):
    return reg.list_all().model_dump()


@app.post("/operators")
def add_operator(body: OperatorIn, reg: OperatorRegistry = Depends(get_registry)):
    added = reg.add(body.user_id)
    return {"ok": True, "added": added}


@app.delete("/operators")
def remove_operator(value: str, reg: OperatorRegistry = Depends(get_registry)):
    if not reg.remove(value):
        raise HTTPException(status_code=404, detail=f"operator {value!r} not found")
    return {"ok": True}


@app.get("/operators/{user_id}")
def check_operator(user_id: int, reg: OperatorRegistry = Depends(get_registry)):
    return {"user_id": user_id, "is_operator": reg.is_operator(user_id)}


def main():
    setup_logging(env("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host=env("HOST", "127.0.0.1"), port=int(env("REGISTRY_PORT", "8000")))


if __name__ == "__main__":
    main()
