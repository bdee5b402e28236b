from billing_analytics.bundles.api import router
from billing_analytics.bundles.factory import BundleRecordBuilder, BusinessBundleFactory
from billing_analytics.bundles.ranking import RankedTransitions, filter_transitions_for_base_plans
from billing_analytics.bundles.sanity import BundleSanityChecker, bundle_sanity_checker
from billing_analytics.bundles.schemas import BundleRecord, SubscriptionTransition
from billing_analytics.bundles.service import BundleRefreshService, bundle_refresh_service
from billing_analytics.bundles.sql_context import SqlBundleContext

__all__ = [
    "router",
    "BundleRecord",
    "BundleRecordBuilder",
    "BusinessBundleFactory",
    "RankedTransitions",
    "SubscriptionTransition",
    "filter_transitions_for_base_plans",
    "BundleSanityChecker",
    "bundle_sanity_checker",
    "BundleRefreshService",
    "bundle_refresh_service",
    "SqlBundleContext",
]
