"""库存API专用的Pydantic模型和响应格式"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Dict, Optional
from datetime import datetime

from app.core.exceptions import ReservationErrorCode, ReservationError
from app.models.inventory_reservations import ReservationStatus


class ReservationItem(BaseModel):
    """单个预占行"""
    product_id: int = Field(..., gt=0, description="商品ID")
    variant_id: Optional[int] = Field(None, gt=0, description="规格ID")
    quantity: int = Field(..., gt=0, le=999, description="预占数量")


# ==================== 服务层结果 ====================

class ReservationResult(BaseModel):
    """单条预占结果（库存不足是常见结果，不走异常）"""
    success: bool
    reservation_id: Optional[str] = None
    available_stock: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[ReservationErrorCode] = None

    @classmethod
    def ok(cls, reservation_id: str, available_stock: int) -> "ReservationResult":
        return cls(success=True, reservation_id=reservation_id, available_stock=available_stock)

    @classmethod
    def from_error(cls, exc: ReservationError) -> "ReservationResult":
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.code,
            available_stock=getattr(exc, "available", None),
        )


class BatchReservationResult(BaseModel):
    """多商品预占结果（全部成功或全部回滚）"""
    success: bool
    reservation_ids: List[str] = []
    error: Optional[str] = None
    error_code: Optional[ReservationErrorCode] = None
    failed_index: Optional[int] = None


# ==================== 请求模型 ====================

class ReserveStockRequest(ReservationItem):
    """预占库存请求"""
    user_id: Optional[str] = Field(None, max_length=64, description="登录用户ID")
    session_id: Optional[str] = Field(None, max_length=128, description="匿名会话ID")
    hold_minutes: Optional[int] = Field(None, gt=0, le=1440, description="持有时长（分钟）")


class BatchReserveRequest(BaseModel):
    """批量预占请求（结算时一次锁定整单）"""
    items: List[ReservationItem] = Field(..., min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, max_length=64)
    session_id: Optional[str] = Field(None, max_length=128)


class CommitRequest(BaseModel):
    """提交预占请求"""
    order_id: str = Field(..., min_length=1, max_length=64, description="订单ID")


class ExtendRequest(BaseModel):
    """延长预占请求"""
    additional_minutes: Optional[int] = Field(None, gt=0, le=1440)


class AttachOrderRequest(BaseModel):
    """关联订单请求"""
    reservation_ids: List[str] = Field(..., min_length=1, max_length=100)


class BatchStockQueryRequest(BaseModel):
    """批量查询库存请求"""
    product_ids: List[int] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="商品ID列表",
    )


# ==================== 响应模型 ====================

class BaseResponse(BaseModel):
    """基础响应模型"""
    success: bool = Field(
        ...,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class StockResponse(BaseResponse):
    """单个库存归属的可用量"""
    product_id: int
    variant_id: Optional[int] = None
    available_stock: int = Field(..., ge=0)


class BatchStockResponse(BaseResponse):
    """批量库存查询响应"""
    data: Dict[int, int] = Field(
        ...,
        description="商品ID到可用库存的映射"
    )


class OperationResponse(BaseResponse):
    """操作响应（提交、释放、延长）"""
    data: Optional[bool] = None


class CountResponse(BaseResponse):
    """影响行数响应"""
    count: int = Field(..., ge=0)


class OrderCommitResponse(BaseResponse):
    """整单提交结果"""
    committed: List[str] = []
    failed: List[str] = []


class CleanupResponse(BaseResponse):
    """清理任务响应"""
    cleaned_count: Optional[int] = Field(None, ge=0)


class CeleryTaskResponse(BaseResponse):
    """Celery任务响应"""
    task_id: Optional[str] = None


class TaskStatusResponse(BaseModel):
    """任务状态响应"""
    task_id: str
    status: str
    state: str


class ReservationDetail(BaseModel):
    """预占记录详情"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: int
    variant_id: Optional[int] = None
    quantity: int
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    order_id: Optional[str] = None
    status: ReservationStatus
    expires_at: datetime
    released_at: Optional[datetime] = None
    committed_at: Optional[datetime] = None
