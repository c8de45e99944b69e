"""
HTTP surface for the storage node and the audit coordinator.

Thin wiring only: every endpoint delegates to the protocol modules and the
ledger binding. Errors map to HTTP status codes by their ``PdpError`` type.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import config
from .auditor import AuditService, local_prover
from .binding import AuditLedgerBinding
from .errors import (
    ChallengeReplayed,
    DuplicateTag,
    EmptyBlock,
    InvalidModulus,
    LedgerUnavailable,
    MalformedProof,
    MissingBlock,
    MissingTag,
    NoAuditableBlocks,
    PdpError,
    RandomnessUnavailable,
    UnknownChallenge,
)
from .ledger import InMemoryLedger, LedgerStore, SqliteLedger
from .logging_config import configure_logging, set_request_id
from .params import ModulusParameters
from .proof import Prover
from .signing import FileKeySigner, RecordSigner, TrustStore
from .storage import BlockStore, FileSystemBlockStore, InMemoryBlockStore
from .transport import (
    AuditRequest,
    DownloadRequest,
    GetBlocksRequest,
    StoreRequest,
    b64d,
    b64e,
    decode_challenge,
    encode_proof,
)

ERROR_STATUS = {
    EmptyBlock: 400,
    NoAuditableBlocks: 400,
    MalformedProof: 422,
    MissingBlock: 404,
    MissingTag: 404,
    UnknownChallenge: 404,
    DuplicateTag: 409,
    ChallengeReplayed: 409,
    LedgerUnavailable: 503,
    RandomnessUnavailable: 503,
    InvalidModulus: 500,
}


def status_for(error: PdpError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


@dataclass
class Runtime:
    params: ModulusParameters
    binding: AuditLedgerBinding
    service: AuditService
    block_store: BlockStore
    prover: Prover
    trust_store: Optional[TrustStore] = None


def build_runtime(
    params: ModulusParameters,
    store: LedgerStore,
    block_store: BlockStore,
    signer: Optional[RecordSigner] = None,
    trust_store: Optional[TrustStore] = None,
    sample_size: int = config.SAMPLE_SIZE,
    max_open: int = config.MAX_OPEN_CHALLENGES
) -> Runtime:
    binding = AuditLedgerBinding(store, signer=signer)
    return Runtime(
        params=params,
        binding=binding,
        service=AuditService(params, binding, sample_size=sample_size, max_open=max_open),
        block_store=block_store,
        prover=local_prover(params, block_store, binding),
        trust_store=trust_store,
    )


def runtime_from_config() -> Runtime:
    """Assemble the runtime from environment configuration. Fails on bad parameters."""
    params = config.load_params()
    if config.LEDGER_BACKEND == "memory":
        store: LedgerStore = InMemoryLedger()
    else:
        store = SqliteLedger(config.LEDGER_DB_PATH)
    if config.BLOCK_STORE == "memory":
        block_store: BlockStore = InMemoryBlockStore()
    else:
        block_store = FileSystemBlockStore(config.BLOCK_STORE_DIR)
    signer = FileKeySigner(config.SIGNING_KEY_PATH) if config.SIGNING_KEY_PATH else None
    trust_store = TrustStore(config.TRUST_STORE_PATH) if signer else None
    return build_runtime(params, store, block_store, signer, trust_store,
                         config.SAMPLE_SIZE, config.MAX_OPEN_CHALLENGES)


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    app = FastAPI(title="PDP Audit Ledger")
    app.state.runtime = runtime

    @app.on_event("startup")
    def _startup():
        if app.state.runtime is None:
            configure_logging(config.LOG_LEVEL, config.LOG_JSON, config.LOG_FILE)
            app.state.runtime = runtime_from_config()

    @app.on_event("shutdown")
    def _shutdown():
        if app.state.runtime is not None:
            app.state.runtime.binding.store.close()

    def rt() -> Runtime:
        if app.state.runtime is None:
            raise HTTPException(503, "NOT_READY")
        return app.state.runtime

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        rid = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["x-request-id"] = rid
        return response

    @app.exception_handler(PdpError)
    async def _pdp_error(request: Request, exc: PdpError):
        return JSONResponse(status_code=status_for(exc), content={"error": exc.code, "message": exc.message})

    # ------------------------------------------------------------
    # Storage node
    # ------------------------------------------------------------

    @app.post("/store")
    def store_blocks(req: StoreRequest):
        blocks = {}
        for b in req.blocks:
            try:
                blocks[b.blockIndex] = b64d(b.data)
            except ValueError:
                raise HTTPException(400, "BAD_BASE64")
        for index, data in blocks.items():
            rt().block_store.put_block(req.fileId, index, data)
        return {"ok": True, "stored": len(blocks)}

    @app.post("/getBlocks")
    def get_blocks(req: GetBlocksRequest):
        out = []
        for index in req.indices:
            data = rt().block_store.get_block(req.fileId, index)
            if data is not None:
                out.append({"blockIndex": index, "data": b64e(data)})
        return {"blocks": out}

    @app.post("/prove")
    def prove(challenge: Dict[str, Any] = Body(...)):
        proof = rt().prover.respond(decode_challenge(challenge))
        return encode_proof(proof)

    # ------------------------------------------------------------
    # Coordinator / verifier
    # ------------------------------------------------------------

    @app.get("/params")
    def get_params():
        return rt().params.to_dict()

    @app.post("/upload")
    def upload(req: StoreRequest):
        """Store blocks and anchor their tags. Tags are anchored only if every block is valid."""
        blocks = {}
        for b in req.blocks:
            try:
                blocks[b.blockIndex] = b64d(b.data)
            except ValueError:
                raise HTTPException(400, "BAD_BASE64")
        records = rt().service.ingest(req.fileId, blocks, uid=req.uid)
        for index, data in blocks.items():
            rt().block_store.put_block(req.fileId, index, data)
        return {"fileId": req.fileId, "tags": len(records)}

    @app.get("/files/{file_id}/tags")
    def file_tags(file_id: str):
        return [r.to_dict() for r in rt().binding.get_tags_for_file(file_id)]

    @app.get("/files/{file_id}/state")
    def file_state(file_id: str):
        return {"fileId": file_id, "state": rt().binding.file_state(file_id).value}

    @app.post("/files/{file_id}/audit")
    def audit(file_id: str, req: Optional[AuditRequest] = None):
        req = req or AuditRequest()
        outcome = rt().service.run_round(file_id, rt().prover, sample_size=req.sampleSize, uid=req.uid)
        return outcome.to_dict()

    @app.post("/files/{file_id}/challenges")
    def open_challenge(file_id: str, req: Optional[AuditRequest] = None):
        req = req or AuditRequest()
        return rt().service.open_challenge(file_id, sample_size=req.sampleSize).to_dict()

    @app.post("/proofs")
    def submit_proof(proof: Dict[str, Any] = Body(...)):
        return rt().service.submit_proof(proof).to_dict()

    @app.get("/files/{file_id}/audit/latest")
    def latest_audit(file_id: str):
        rec = rt().binding.get_latest_audit_status(file_id)
        if rec is None:
            raise HTTPException(404, "NO_AUDIT_RECORD")
        return rec.to_dict()

    @app.get("/files/{file_id}/audit/history")
    def audit_history(file_id: str):
        return [r.to_dict() for r in rt().binding.get_audit_history(file_id)]

    @app.post("/files/{file_id}/downloads")
    def log_download(file_id: str, req: DownloadRequest):
        rec = rt().binding.log_download(file_id, req.userId, req.allowed, req.requestHash, uid=req.uid)
        return rec.to_dict()

    @app.get("/files/{file_id}/downloads")
    def download_history(file_id: str):
        return [r.to_dict() for r in rt().binding.get_download_history(file_id)]

    @app.get("/ledger/chain")
    def ledger_chain():
        return rt().binding.export_chain()

    @app.get("/ledger/verify")
    def ledger_verify():
        return rt().binding.verify_chain(rt().trust_store).to_dict()

    return app


app = create_app()
