"""库存预占 API 路由（对预占服务的薄封装）"""

from fastapi import APIRouter, HTTPException, Query, Path, Body
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from app.core.dependencies import InventoryServiceDep
from app.core.exceptions import ReservationErrorCode
from app.services.inventory_service import InventoryService
from app.schemas.inventory_api import (
    ReserveStockRequest,
    BatchReserveRequest,
    CommitRequest,
    ExtendRequest,
    AttachOrderRequest,
    BatchStockQueryRequest,
    ReservationResult,
    BatchReservationResult,
    ReservationDetail,
    StockResponse,
    BatchStockResponse,
    OperationResponse,
    CountResponse,
    OrderCommitResponse,
    CleanupResponse,
    CeleryTaskResponse,
    TaskStatusResponse,
)
from celery_app import app as celery_app
from tasks.inventory_tasks import cleanup_expired_reservations as celery_cleanup_task

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/inventory",
    tags=["库存预占"],
    responses={
        400: {"description": "请求参数错误"},
        404: {"description": "资源未找到"},
        409: {"description": "库存不足或预占状态不允许该操作"},
        422: {"description": "请求验证失败"},
        429: {"description": "库存操作冲突，请稍后重试"},
        500: {"description": "服务器内部错误"}
    }
)

# 业务错误码 -> HTTP 状态码
ERROR_STATUS = {
    ReservationErrorCode.INVALID_INPUT: 400,
    ReservationErrorCode.NOT_FOUND: 404,
    ReservationErrorCode.INSUFFICIENT_STOCK: 409,
    ReservationErrorCode.CONFLICT: 429,
}


def _failure_response(result) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(result.error_code, 400),
        content=result.model_dump(mode="json"),
    )


@router.post(
    "/reservations",
    response_model=ReservationResult,
    summary="创建预占",
    description="""预占指定商品/规格的库存，防止超卖。

    **特点：**
    - 锁住库存归属行后统计有效预占，保证原子性
    - 可选 Redlock 分布式锁进一步削峰
    - 默认 15 分钟后过期，由清理任务回收
    """,
)
def create_reservation(
    request: ReserveStockRequest = Body(...),
    service: InventoryService = InventoryServiceDep,
):
    """创建预占（防超卖核心接口）"""
    try:
        result = service.create_reservation(
            request.product_id,
            request.quantity,
            variant_id=request.variant_id,
            user_id=request.user_id,
            session_id=request.session_id,
            hold_minutes=request.hold_minutes,
        )
    except Exception as e:
        logger.error(f"创建预占失败: {str(e)}")
        # 未知异常统一抛 500
        raise HTTPException(status_code=500, detail=str(e))

    if not result.success:
        return _failure_response(result)
    return result


@router.post(
    "/reservations/batch",
    response_model=BatchReservationResult,
    summary="整单预占",
)
def reserve_items(
    request: BatchReserveRequest = Body(...),
    service: InventoryService = InventoryServiceDep,
):
    """结算时一次预占多个商品，任意一行失败则整单回滚"""
    try:
        result = service.reserve_items(
            request.items, user_id=request.user_id, session_id=request.session_id
        )
    except Exception as e:
        logger.error(f"整单预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not result.success:
        return _failure_response(result)
    return result


@router.get(
    "/reservations/{reservation_id}",
    response_model=ReservationDetail,
    summary="查询预占",
)
def get_reservation(
    reservation_id: str = Path(..., description="预占ID"),
    service: InventoryService = InventoryServiceDep,
):
    reservation = service.get_reservation(reservation_id)
    if reservation is None:
        raise HTTPException(status_code=404, detail="预占记录不存在")
    return reservation


@router.post(
    "/reservations/{reservation_id}/commit",
    response_model=OperationResponse,
    summary="提交预占",
    description="""支付成功后调用，真正扣减实物库存。

    **注意：**
    - 只有 active 且未到期的预占可以提交
    - 重复提交返回 409，不会重复扣减
    """,
)
def commit_reservation(
    reservation_id: str = Path(..., description="预占ID"),
    request: CommitRequest = Body(...),
    service: InventoryService = InventoryServiceDep,
):
    """提交预占（支付成功后调用）"""
    try:
        committed = service.commit_reservation(reservation_id, request.order_id)
    except Exception as e:
        logger.error(f"提交预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not committed:
        raise HTTPException(status_code=409, detail="预占不可提交或库存已不足")
    return {"success": True, "message": "提交成功", "data": True}


@router.post(
    "/reservations/{reservation_id}/release",
    response_model=OperationResponse,
    summary="释放预占",
)
def release_reservation(
    reservation_id: str = Path(..., description="预占ID"),
    service: InventoryService = InventoryServiceDep,
):
    """释放预占（支付失败、取消或放弃结算）"""
    try:
        released = service.release_reservation(reservation_id)
    except Exception as e:
        logger.error(f"释放预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not released:
        raise HTTPException(status_code=409, detail="预占不存在或已是终态")
    return {"success": True, "message": "释放成功", "data": True}


@router.post(
    "/reservations/{reservation_id}/extend",
    response_model=OperationResponse,
    summary="延长预占",
)
def extend_reservation(
    reservation_id: str = Path(..., description="预占ID"),
    request: Optional[ExtendRequest] = Body(None),
    service: InventoryService = InventoryServiceDep,
):
    try:
        minutes = request.additional_minutes if request else None
        extended = service.extend_reservation(reservation_id, minutes)
    except Exception as e:
        logger.error(f"延长预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not extended:
        raise HTTPException(status_code=409, detail="预占不存在或已失效")
    return {"success": True, "message": "延长成功", "data": True}


@router.post(
    "/orders/{order_id}/reservations",
    response_model=CountResponse,
    summary="预占关联订单",
)
def attach_order(
    order_id: str = Path(..., min_length=1, max_length=64),
    request: AttachOrderRequest = Body(...),
    service: InventoryService = InventoryServiceDep,
):
    try:
        count = service.attach_order(request.reservation_ids, order_id)
    except Exception as e:
        logger.error(f"关联订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "message": "关联完成", "count": count}


@router.post(
    "/orders/{order_id}/commit",
    response_model=OrderCommitResponse,
    summary="提交订单全部预占",
)
def commit_order(
    order_id: str = Path(..., min_length=1, max_length=64),
    service: InventoryService = InventoryServiceDep,
):
    """支付回调：提交订单下全部预占，failed 非空时需对账"""
    try:
        outcome = service.commit_order_reservations(order_id)
    except Exception as e:
        logger.error(f"提交订单预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    success = not outcome["failed"]
    return {
        "success": success,
        "message": "提交成功" if success else "部分预占提交失败，需人工对账",
        **outcome,
    }


@router.post(
    "/orders/{order_id}/release",
    response_model=CountResponse,
    summary="释放订单全部预占",
)
def release_order(
    order_id: str = Path(..., min_length=1, max_length=64),
    service: InventoryService = InventoryServiceDep,
):
    try:
        count = service.release_order_reservations(order_id)
    except Exception as e:
        logger.error(f"释放订单预占失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "message": "释放完成", "count": count}


@router.get(
    "/stock/{product_id}",
    response_model=StockResponse,
    summary="查询可用库存",
    description="""可用库存 = 实物库存 - 有效预占。

    **缓存策略：**
    - 首先查询Redis缓存
    - 缓存未命中则查询数据库
    - 任何预占状态变化都会失效缓存

    结果仅供展示参考，最终以创建预占时的事务内校验为准。
    """,
)
def get_stock(
    product_id: int = Path(..., gt=0, description="商品ID"),
    variant_id: Optional[int] = Query(None, gt=0, description="规格ID"),
    service: InventoryService = InventoryServiceDep,
):
    try:
        stock = service.get_available_stock(product_id, variant_id)
    except Exception as e:
        logger.error(f"查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "success": True,
        "product_id": product_id,
        "variant_id": variant_id,
        "available_stock": stock,
    }


@router.post(
    "/stock/batch",
    response_model=BatchStockResponse,
    summary="批量查询商品库存",
)
def batch_get_stocks(
    request: BatchStockQueryRequest = Body(...),
    service: InventoryService = InventoryServiceDep,
):
    try:
        stocks = service.batch_get_available_stock(request.product_ids)
    except Exception as e:
        logger.error(f"批量查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return BatchStockResponse(success=True, data=stocks)


@router.post("/cleanup/manual", response_model=CleanupResponse)
def manual_cleanup(
    batch_size: int = Query(500, ge=1, le=10000),
    service: InventoryService = InventoryServiceDep,
):
    """手动触发清理任务（API 直接调用 Service）"""
    try:
        count = service.cleanup_expired_reservations(batch_size)
    except Exception as e:
        logger.error(f"手动清理失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "success": True,
        "message": "手动清理完成",
        "cleaned_count": count
    }


@router.post("/cleanup/celery", response_model=CeleryTaskResponse)
def celery_cleanup(batch_size: int = Query(500, ge=1, le=10000)):
    """触发 Celery 异步清理任务"""
    try:
        task = celery_cleanup_task.delay(batch_size)
    except Exception as e:
        logger.error(f"Celery 任务提交失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "success": True,
        "message": "已提交异步清理任务",
        "task_id": task.id
    }


@router.get("/cleanup/status/{task_id}", response_model=TaskStatusResponse)
def get_cleanup_status(task_id: str):
    """查询 Celery 任务执行状态"""
    try:
        task = celery_app.AsyncResult(task_id)

        if task.state == 'PENDING':
            status = "任务等待中"
        elif task.state == 'SUCCESS':
            status = f"任务完成: {task.result}"
        elif task.state == 'FAILURE':
            status = f"任务失败: {str(task.info)}"
        else:
            status = f"任务状态: {task.state}"
    except Exception as e:
        logger.error(f"查询任务状态失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "task_id": task_id,
        "status": status,
        "state": task.state
    }
