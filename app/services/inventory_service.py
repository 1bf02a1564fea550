"""库存预占服务实现

预占生命周期：active -> committed / released / expired，终态不可再流转。
可用库存 = 实物库存 - 有效（active 且未到期）预占数量之和。
只有提交预占会扣减实物库存，释放与过期只是让预占不再计入。
"""

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session
from typing import Dict, Iterable, List, Optional
from datetime import datetime, timedelta, timezone
import logging
from redis import Redis
from redis.exceptions import RedisError
from redlock import Redlock

from app.core.config import settings
from app.core.exceptions import (
    ReservationError,
    InvalidInputError,
    StockOwnerNotFoundError,
    InsufficientStockError,
    ReservationConflictError,
)
from app.models.product import Product
from app.models.product_variant import ProductVariant
from app.models.inventory_reservations import InventoryReservation, ReservationStatus
from app.models.inventory_logs import InventoryLog, ChangeType
from app.schemas.inventory_api import ReservationResult, BatchReservationResult

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """sqlite 取回的是 naive 时间，统一按 UTC 处理"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def stock_cache_key(product_id: int, variant_id: Optional[int] = None) -> str:
    return f"stock:available:{product_id}:{'-' if variant_id is None else variant_id}"


def stock_lock_key(product_id: int, variant_id: Optional[int] = None) -> str:
    return f"lock:inventory:{product_id}:{'-' if variant_id is None else variant_id}"


def stock_version_key(product_id: int, variant_id: Optional[int] = None) -> str:
    return f"stock:version:{product_id}:{'-' if variant_id is None else variant_id}"


class InventoryService:
    """库存预占核心服务类"""

    def __init__(self, db: Session, redis: Redis = None, rlock: Redlock = None):
        self.db = db
        self.redis = redis
        self.rlock = rlock

    # ==================== 库存归属（商品 / 规格） ====================

    @staticmethod
    def _owner_conditions(product_id: int, variant_id: Optional[int]):
        if variant_id is None:
            return Product, [Product.id == product_id]
        return ProductVariant, [
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id,
        ]

    @staticmethod
    def _reservation_owner_conditions(product_id: int, variant_id: Optional[int]):
        # 严格按 (product_id, variant_id) 区分，商品本身与各规格互不影响
        if variant_id is None:
            variant_clause = InventoryReservation.variant_id.is_(None)
        else:
            variant_clause = InventoryReservation.variant_id == variant_id
        return [InventoryReservation.product_id == product_id, variant_clause]

    def _read_stock_quantity(
        self, product_id: int, variant_id: Optional[int], for_update: bool = False
    ) -> Optional[int]:
        model, conditions = self._owner_conditions(product_id, variant_id)
        stmt = select(model.stock_quantity).where(*conditions)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def _active_reserved_sum(
        self, product_id: int, variant_id: Optional[int], now: datetime
    ) -> int:
        stmt = select(func.coalesce(func.sum(InventoryReservation.quantity), 0)).where(
            *self._reservation_owner_conditions(product_id, variant_id),
            InventoryReservation.status == ReservationStatus.ACTIVE,
            InventoryReservation.expires_at > now,
        )
        return int(self.db.execute(stmt).scalar_one())

    # ==================== 缓存 ====================

    def _invalidate_cache(self, *owners) -> None:
        """删除缓存并递增版本号，让并发读者算出的旧值无法回填"""
        if not self.redis or not owners:
            return
        keys = [stock_cache_key(product_id, variant_id) for product_id, variant_id in owners]
        try:
            pipe = self.redis.pipeline()
            pipe.delete(*keys)
            for product_id, variant_id in owners:
                pipe.incr(stock_version_key(product_id, variant_id))
            pipe.execute()
            logger.debug(f"Cache invalidated: {keys}")
        except RedisError as e:
            logger.warning(f"库存缓存失效失败（依赖 TTL 自然过期）: {e}")

    def _store_available(self, cache_key: str, version_key: str, version, available: int) -> None:
        """仅当版本号自读取以来未变时写入缓存"""

        def _store(pipe):
            if pipe.get(version_key) != version:
                logger.debug(f"Cache fill skipped for {cache_key}: concurrent write")
                return
            pipe.multi()
            pipe.setex(cache_key, settings.STOCK_CACHE_TTL_SECONDS, available)
            logger.debug(f"Cache set for {cache_key}: {available}")

        try:
            # WATCH 期间版本号被改动时 transaction 会重试，重试时比较失败即放弃回填
            self.redis.transaction(_store, version_key)
        except RedisError as e:
            logger.warning(f"写入库存缓存失败: {e}")

    # ==================== 日志 ====================

    def _write_log(
        self,
        change_type: ChangeType,
        reservation: InventoryReservation,
        quantity: int,
        before_available: int = None,
        after_available: int = None,
        order_id: str = None,
        operator: str = None,
        source: str = None,
    ) -> None:
        self.db.add(
            InventoryLog(
                product_id=reservation.product_id,
                variant_id=reservation.variant_id,
                reservation_id=reservation.id,
                order_id=order_id,
                change_type=change_type,
                quantity=quantity,
                before_available=before_available,
                after_available=after_available,
                operator=operator,
                source=source,
            )
        )

    # ==================== 预占 ====================

    @staticmethod
    def _validate_request(
        quantity, user_id: Optional[str], session_id: Optional[str], hold_minutes: Optional[int]
    ) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidInputError("Quantity must be positive")
        if not user_id and not session_id:
            raise InvalidInputError("User ID or session ID required")
        if user_id and session_id:
            raise InvalidInputError("Provide either user ID or session ID, not both")
        if hold_minutes is not None and hold_minutes <= 0:
            raise InvalidInputError("Hold window must be positive")

    def create_reservation(
        self,
        product_id: int,
        quantity: int,
        variant_id: Optional[int] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        hold_minutes: Optional[int] = None,
    ) -> ReservationResult:
        """创建预占（防超卖核心）

        锁住库存归属行后在同一事务内统计有效预占，
        保证并发请求不会读到同一个可用量后同时成功。

        Returns:
            ReservationResult，available_stock 为预占前的可用量
        """
        try:
            self._validate_request(quantity, user_id, session_id, hold_minutes)
        except InvalidInputError as e:
            logger.warning(f"预占参数错误: product_id={product_id}, {e.message}")
            return ReservationResult.from_error(e)

        lock = None
        if self.rlock:
            lock = self.rlock.lock(
                stock_lock_key(product_id, variant_id), settings.RESERVATION_LOCK_TTL_MS
            )
            if not lock:
                logger.warning(f"获取库存锁失败: product_id={product_id}, variant_id={variant_id}")
                return ReservationResult.from_error(ReservationConflictError())

        try:
            now = utcnow()
            # 行级锁：同一库存归属的预占在此排队
            stock_quantity = self._read_stock_quantity(product_id, variant_id, for_update=True)
            if stock_quantity is None:
                raise StockOwnerNotFoundError(product_id, variant_id)

            reserved = self._active_reserved_sum(product_id, variant_id, now)
            available = stock_quantity - reserved
            if available < quantity:
                raise InsufficientStockError(quantity, max(available, 0))

            hold = hold_minutes or settings.RESERVATION_HOLD_MINUTES
            reservation = InventoryReservation(
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                user_id=user_id or None,
                session_id=session_id or None,
                status=ReservationStatus.ACTIVE,
                expires_at=now + timedelta(minutes=hold),
            )
            self.db.add(reservation)
            self.db.flush()

            self._write_log(
                ChangeType.RESERVE,
                reservation,
                quantity=-quantity,
                before_available=available,
                after_available=available - quantity,
                operator=f"user_{user_id}" if user_id else f"session_{session_id}",
                source="checkout",
            )
            self.db.commit()

        except ReservationError as e:
            self.db.rollback()
            logger.warning(
                f"预占被拒绝: product_id={product_id}, variant_id={variant_id}, "
                f"quantity={quantity}, reason={e.message}"
            )
            return ReservationResult.from_error(e)
        except Exception as e:
            self.db.rollback()
            logger.error(f"预占库存失败: product_id={product_id}, error={str(e)}")
            raise
        finally:
            # 释放分布式锁
            if self.rlock and lock:
                self.rlock.unlock(lock)

        self._invalidate_cache((product_id, variant_id))
        logger.info(
            f"预占库存成功: reservation_id={reservation.id}, product_id={product_id}, "
            f"variant_id={variant_id}, quantity={quantity}, available_before={available}"
        )
        return ReservationResult.ok(reservation.id, available)

    def reserve_items(
        self,
        items: Iterable,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> BatchReservationResult:
        """整单预占：任意一行失败则释放本批已创建的预占"""
        items = list(items)
        if not items:
            e = InvalidInputError("At least one item required")
            return BatchReservationResult(success=False, error=e.message, error_code=e.code)

        reservation_ids: List[str] = []
        try:
            for index, item in enumerate(items):
                if isinstance(item, dict):
                    product_id = item["product_id"]
                    variant_id = item.get("variant_id")
                    quantity = item["quantity"]
                else:
                    product_id, variant_id, quantity = item.product_id, item.variant_id, item.quantity

                result = self.create_reservation(
                    product_id,
                    quantity,
                    variant_id=variant_id,
                    user_id=user_id,
                    session_id=session_id,
                )
                if not result.success:
                    self._release_all(reservation_ids)
                    return BatchReservationResult(
                        success=False,
                        error=result.error,
                        error_code=result.error_code,
                        failed_index=index,
                    )
                reservation_ids.append(result.reservation_id)
        except Exception:
            self._release_all(reservation_ids)
            raise

        return BatchReservationResult(success=True, reservation_ids=reservation_ids)

    def _release_all(self, reservation_ids: List[str]) -> None:
        for reservation_id in reservation_ids:
            try:
                self.release_reservation(reservation_id)
            except Exception as e:
                # 释放失败的预占会在到期后被清理任务回收
                logger.error(f"回滚预占失败: reservation_id={reservation_id}, error={str(e)}")

    # ==================== 提交 / 释放 / 延长 ====================

    def get_reservation(self, reservation_id: str) -> Optional[InventoryReservation]:
        """按ID读取预占（总是取数据库最新状态）"""
        return self.db.execute(
            select(InventoryReservation)
            .where(InventoryReservation.id == reservation_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def commit_reservation(self, reservation_id: str, order_id: str) -> bool:
        """提交预占（支付成功后调用，真正扣减实物库存）

        已提交/已释放/已过期或不存在时返回 False；到期但尚未被清理的预占仍可提交。
        实物库存被其他途径扣到不足时同样返回 False，预占保持 active。
        """
        try:
            reservation = self.get_reservation(reservation_id)
            if reservation is None or reservation.is_terminal:
                self.db.rollback()
                logger.warning(f"无可提交的预占: reservation_id={reservation_id}")
                return False

            now = utcnow()
            transitioned = self.db.execute(
                update(InventoryReservation)
                .where(
                    InventoryReservation.id == reservation_id,
                    InventoryReservation.status == ReservationStatus.ACTIVE,
                )
                .values(
                    status=ReservationStatus.COMMITTED,
                    order_id=order_id,
                    committed_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if transitioned == 0:
                self.db.rollback()
                logger.warning(f"预占已被并发流转，无法提交: reservation_id={reservation_id}")
                return False

            # 条件扣减：库存不足时影响行数为 0
            model, conditions = self._owner_conditions(reservation.product_id, reservation.variant_id)
            decremented = self.db.execute(
                update(model)
                .where(*conditions, model.stock_quantity >= reservation.quantity)
                .values(stock_quantity=model.stock_quantity - reservation.quantity)
                .execution_options(synchronize_session=False)
            ).rowcount
            if decremented == 0:
                self.db.rollback()
                logger.warning(
                    f"提交预占时库存不足: reservation_id={reservation_id}, "
                    f"product_id={reservation.product_id}, variant_id={reservation.variant_id}"
                )
                return False

            self._write_log(
                ChangeType.COMMIT,
                reservation,
                quantity=-reservation.quantity,
                order_id=order_id,
                operator=f"order_{order_id}",
                source="payment",
            )
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            logger.error(f"提交预占失败: reservation_id={reservation_id}, error={str(e)}")
            raise

        self._invalidate_cache((reservation.product_id, reservation.variant_id))
        logger.info(
            f"提交预占成功: reservation_id={reservation_id}, order_id={order_id}, "
            f"quantity={reservation.quantity}"
        )
        return True

    def release_reservation(self, reservation_id: str) -> bool:
        """释放预占（支付失败/取消/放弃结算），不改动实物库存"""
        try:
            reservation = self.get_reservation(reservation_id)
            if reservation is None:
                self.db.rollback()
                return False

            released = self.db.execute(
                update(InventoryReservation)
                .where(
                    InventoryReservation.id == reservation_id,
                    InventoryReservation.status == ReservationStatus.ACTIVE,
                )
                .values(status=ReservationStatus.RELEASED, released_at=utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if released == 0:
                self.db.rollback()
                logger.info(
                    f"预占已是终态，忽略释放: reservation_id={reservation_id}, "
                    f"status={reservation.status.value}"
                )
                return False

            self._write_log(
                ChangeType.RELEASE,
                reservation,
                quantity=reservation.quantity,
                order_id=reservation.order_id,
                operator="order_service",
                source="checkout",
            )
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            logger.error(f"释放预占失败: reservation_id={reservation_id}, error={str(e)}")
            raise

        self._invalidate_cache((reservation.product_id, reservation.variant_id))
        logger.info(f"释放预占成功: reservation_id={reservation_id}")
        return True

    def extend_reservation(self, reservation_id: str, additional_minutes: int = None) -> bool:
        """延长有效预占的持有时间（默认再延长一个持有窗口）"""
        minutes = settings.RESERVATION_HOLD_MINUTES if additional_minutes is None else additional_minutes
        if minutes <= 0:
            return False

        try:
            reservation = self.get_reservation(reservation_id)
            if reservation is None or reservation.is_terminal:
                self.db.rollback()
                return False

            new_expiry = as_utc(reservation.expires_at) + timedelta(minutes=minutes)
            extended = self.db.execute(
                update(InventoryReservation)
                .where(
                    InventoryReservation.id == reservation_id,
                    InventoryReservation.status == ReservationStatus.ACTIVE,
                    InventoryReservation.expires_at > utcnow(),
                )
                .values(expires_at=new_expiry)
                .execution_options(synchronize_session=False)
            ).rowcount
            if extended == 0:
                self.db.rollback()
                return False

            self._write_log(
                ChangeType.EXTEND,
                reservation,
                quantity=0,
                order_id=reservation.order_id,
                source="checkout",
            )
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            logger.error(f"延长预占失败: reservation_id={reservation_id}, error={str(e)}")
            raise

        logger.info(f"延长预占成功: reservation_id={reservation_id}, expires_at={new_expiry}")
        return True

    # ==================== 订单维度 ====================

    def attach_order(self, reservation_ids: List[str], order_id: str) -> int:
        """把有效预占关联到刚创建的订单，返回关联条数"""
        if not reservation_ids:
            return 0
        try:
            count = self.db.execute(
                update(InventoryReservation)
                .where(
                    InventoryReservation.id.in_(reservation_ids),
                    InventoryReservation.status == ReservationStatus.ACTIVE,
                )
                .values(order_id=order_id)
                .execution_options(synchronize_session=False)
            ).rowcount
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"关联订单失败: order_id={order_id}, error={str(e)}")
            raise

        logger.info(f"关联订单: order_id={order_id}, count={count}")
        return count

    def _active_reservation_ids(self, order_id: str) -> List[str]:
        ids = self.db.execute(
            select(InventoryReservation.id)
            .where(
                InventoryReservation.order_id == order_id,
                InventoryReservation.status == ReservationStatus.ACTIVE,
            )
            .order_by(InventoryReservation.created_at)
        ).scalars().all()
        return list(ids)

    def commit_order_reservations(self, order_id: str) -> Dict[str, List[str]]:
        """提交订单下全部有效预占

        Returns:
            {"committed": [...], "failed": [...]}，failed 非空时订单需要人工对账或退款
        """
        committed, failed = [], []
        for reservation_id in self._active_reservation_ids(order_id):
            if self.commit_reservation(reservation_id, order_id):
                committed.append(reservation_id)
            else:
                failed.append(reservation_id)

        if failed:
            logger.error(f"订单部分预占提交失败: order_id={order_id}, failed={failed}")
        return {"committed": committed, "failed": failed}

    def release_order_reservations(self, order_id: str) -> int:
        """释放订单下全部有效预占，返回释放条数"""
        released = 0
        for reservation_id in self._active_reservation_ids(order_id):
            if self.release_reservation(reservation_id):
                released += 1
        logger.info(f"释放订单预占: order_id={order_id}, count={released}")
        return released

    # ==================== 查询 ====================

    def _compute_available(self, product_id: int, variant_id: Optional[int]) -> int:
        stock_quantity = self._read_stock_quantity(product_id, variant_id)
        if stock_quantity is None:
            return 0
        reserved = self._active_reserved_sum(product_id, variant_id, utcnow())
        return max(0, stock_quantity - reserved)

    def get_available_stock(self, product_id: int, variant_id: Optional[int] = None) -> int:
        """查询可用库存（带缓存，仅供展示/加购前参考）

        库存归属不存在时返回 0。
        """
        if not self.redis:
            return self._compute_available(product_id, variant_id)

        cache_key = stock_cache_key(product_id, variant_id)
        version_key = stock_version_key(product_id, variant_id)

        # 先查缓存，未命中时记下版本号再查数据库
        try:
            cached = self.redis.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {cache_key}")
                return int(cached)
            version = self.redis.get(version_key)
        except RedisError as e:
            logger.warning(f"读取库存缓存失败: {e}")
            return self._compute_available(product_id, variant_id)

        available = self._compute_available(product_id, variant_id)
        self._store_available(cache_key, version_key, version, available)
        return available

    def batch_get_available_stock(self, product_ids: List[int]) -> Dict[int, int]:
        """批量获取商品（不含规格）可用库存"""
        if not product_ids:
            return {}

        results = {}
        uncached_ids = list(product_ids)
        versions = {}

        if self.redis:
            cache_keys = [stock_cache_key(pid) for pid in product_ids]
            version_keys = [stock_version_key(pid) for pid in product_ids]
            try:
                values = self.redis.mget(cache_keys + version_keys)
            except RedisError as e:
                logger.warning(f"批量读取库存缓存失败: {e}")
                values = None

            if values is not None:
                uncached_ids = []
                cached_values, version_values = values[:len(product_ids)], values[len(product_ids):]
                for pid, cached, version in zip(product_ids, cached_values, version_values):
                    if cached is not None:
                        results[pid] = int(cached)
                        logger.debug(f"Batch cache hit for product {pid}")
                    else:
                        uncached_ids.append(pid)
                        versions[pid] = version

        if uncached_ids:
            stock_map = dict(
                self.db.execute(
                    select(Product.id, Product.stock_quantity).where(Product.id.in_(uncached_ids))
                ).all()
            )
            reserved_map = dict(
                self.db.execute(
                    select(InventoryReservation.product_id, func.sum(InventoryReservation.quantity))
                    .where(
                        InventoryReservation.product_id.in_(uncached_ids),
                        InventoryReservation.variant_id.is_(None),
                        InventoryReservation.status == ReservationStatus.ACTIVE,
                        InventoryReservation.expires_at > utcnow(),
                    )
                    .group_by(InventoryReservation.product_id)
                ).all()
            )

            for pid in uncached_ids:
                if pid in stock_map:
                    available = max(0, stock_map[pid] - int(reserved_map.get(pid) or 0))
                else:
                    available = 0
                results[pid] = available
                if pid in versions:
                    self._store_available(
                        stock_cache_key(pid), stock_version_key(pid), versions[pid], available
                    )

        return results

    # ==================== 过期清理 ====================

    def count_expired_reservations(self) -> int:
        """统计待清理的过期预占数量（试运行用）"""
        return self.db.execute(
            select(func.count())
            .select_from(InventoryReservation)
            .where(
                InventoryReservation.status == ReservationStatus.ACTIVE,
                InventoryReservation.expires_at < utcnow(),
            )
        ).scalar_one()

    def cleanup_expired_reservations(self, batch_size: int = None) -> int:
        """把到期仍未提交/释放的预占置为 expired

        不改动实物库存：过期预占不再计入有效预占，库存自然可售。

        Args:
            batch_size: 批处理大小，默认取配置 CLEANUP_BATCH_SIZE

        Returns:
            本次转为 expired 的记录数量
        """
        batch_size = batch_size or settings.CLEANUP_BATCH_SIZE
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        total_cleaned = 0

        while True:
            now = utcnow()
            try:
                # skip_locked 防止多个 worker 抢同一批
                expired_reservations = self.db.execute(
                    select(InventoryReservation)
                    .where(
                        InventoryReservation.status == ReservationStatus.ACTIVE,
                        InventoryReservation.expires_at < now,
                    )
                    .order_by(InventoryReservation.expires_at)
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                    .execution_options(populate_existing=True)
                ).scalars().all()

                if not expired_reservations:
                    self.db.rollback()
                    break

                cleaned = self.db.execute(
                    update(InventoryReservation)
                    .where(
                        InventoryReservation.id.in_([r.id for r in expired_reservations]),
                        InventoryReservation.status == ReservationStatus.ACTIVE,
                    )
                    .values(status=ReservationStatus.EXPIRED, released_at=now)
                    .execution_options(synchronize_session=False)
                ).rowcount

                for reservation in expired_reservations:
                    self._write_log(
                        ChangeType.EXPIRE,
                        reservation,
                        quantity=reservation.quantity,
                        order_id=reservation.order_id,
                        operator="system_cleanup",
                        source="cleanup_job",
                    )

                self.db.commit()

            except Exception as e:
                self.db.rollback()
                logger.error(f"批处理清理过程中发生错误: {str(e)}")
                raise

            total_cleaned += cleaned
            logger.info(f"本批清理 {cleaned} 条过期预占，累计 {total_cleaned} 条")

            self._invalidate_cache(
                *{(r.product_id, r.variant_id) for r in expired_reservations}
            )

            # 本批不足 batch_size，说明已清理完
            if len(expired_reservations) < batch_size:
                break

        logger.info(f"清理任务完成，总共清理 {total_cleaned} 条过期预占记录")
        return total_cleaned


__all__ = [
    "InventoryService",
    "stock_cache_key",
    "stock_lock_key",
    "stock_version_key",
    "utcnow",
]
