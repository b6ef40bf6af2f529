from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timezone
from .router import route_request
from .models import AnalyzeRequest, AnalysisReport
from .controllers.analyzer import get_analyzer_controller
from .services.language_detector import Language
from .utils.errors import SorobanParseError, UnsupportedLanguageError
import uvicorn
import os
import logging

load_dotenv()

# Configure logging
logging.basicConfig(level=os.getenv("GASGUARD_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("gasguard.server")

app = FastAPI(title="GasGuard")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def health_check():
    return {"status": "ok", "service": "GasGuard", "version": "0.1.0"}

@app.get("/rules")
async def list_rules():
    return [info.model_dump(mode="json") for info in get_analyzer_controller().rule_infos()]

@app.post("/analyzer/analyze", response_model=AnalysisReport)
async def analyze(body: AnalyzeRequest):
    scanner = get_analyzer_controller().scanner
    try:
        language = Language(body.language) if body.language else None
        result = scanner.scan_content(body.code, body.source, language)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown language: {body.language}")
    except SorobanParseError as e:
        logger.warning(f"Parse failed for {body.source}: {e}")
        raise HTTPException(status_code=422, detail={"code": "PARSE_ERROR", "kind": e.kind, "message": str(e)})
    except UnsupportedLanguageError as e:
        raise HTTPException(status_code=422, detail={"code": "UNSUPPORTED_LANGUAGE", "message": str(e)})

    return AnalysisReport(
        source=result.source,
        analysis_time=datetime.now(timezone.utc).isoformat(),
        violations=result.violations,
        summary=result.summary(),
    )

@app.websocket("/ws/analyze")
async def analyze_ws(ws: WebSocket):
    await ws.accept()
    logger.info("Client connected")

    try:
        while True:
            msg = await ws.receive_json()
            response = await route_request(msg)
            await ws.send_json(response)

    except WebSocketDisconnect:
        logger.info("Client disconnected")
    except Exception as e:
        logger.error(f"WebSocket fatal error: {e}")
        if ws.client_state == WebSocketState.CONNECTED:
            await ws.send_json({
                "type": "error",
                "error": {"code": "FATAL", "message": str(e)}
            })

if __name__ == "__main__":
    port = int(os.getenv("PORT", 3000))
    uvicorn.run("gasguard.server:app", host="0.0.0.0", port=port)
