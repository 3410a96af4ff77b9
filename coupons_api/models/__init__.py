from coupons_api.models.coupon import Coupon
