from commando.core import data_manager, drivers
from commando.core.shards import NullBroadcaster, ShardBroadcaster

from .commandstate import CommandState


async def setup(bot):
    driver_cls = drivers.get_driver_class()
    await driver_cls.initialize(**data_manager.storage_details())

    shards = data_manager.shard_details()
    if shards.is_sharded:
        broadcaster = ShardBroadcaster(
            shards.shard_id, shards.shard_count, host=shards.host, base_port=shards.base_port
        )
    else:
        broadcaster = NullBroadcaster()

    # Loading the settings happens in cog_load, once the cog is being added.
    await bot.add_cog(CommandState(bot, driver=driver_cls(), broadcaster=broadcaster))
